"""Security policy for plugin loading.

Provides:
- Source allow-listing by origin prefix
- HMAC-SHA256 manifest signatures
- Sandbox capability narrowing
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..errors import SecurityError
from .models import Capability, PluginManifest

logger = logging.getLogger(__name__)

# Capabilities a sandboxed plugin keeps; everything else is withheld
SANDBOX_CAPABILITIES = frozenset({
	Capability.COLLECTIONS,
	Capability.GLOBALS,
	Capability.HOOKS,
	Capability.ADMIN,
	Capability.ANALYTICS,
})


def sign_manifest(manifest: PluginManifest, key: str) -> str:
	"""Signature expected for a manifest under ``key``."""
	return hmac.new(key.encode("utf-8"), manifest.signing_payload(), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class SecurityPolicy:
	"""How strictly plugins are vetted before instantiation."""
	verify_signatures: bool = False
	allowed_sources: tuple[str, ...] = ("@paulovila",)
	signing_key: str = ""
	sandbox: bool = False
	sandbox_capabilities: frozenset[Capability] = field(default=SANDBOX_CAPABILITIES)

	def verify(self, manifest: PluginManifest) -> None:
		"""
		Check a manifest's origin and signature.

		Raises:
			SecurityError: origin not allow-listed or signature mismatch
		"""
		if not self.verify_signatures:
			return

		if not self._origin_allowed(manifest.source_origin):
			raise SecurityError(manifest.id, f"source '{manifest.source_origin or '<none>'}' is not allowed")

		if self.signing_key:
			if not manifest.signature:
				raise SecurityError(manifest.id, "manifest is unsigned")
			expected = sign_manifest(manifest, self.signing_key)
			if not hmac.compare_digest(expected, manifest.signature):
				raise SecurityError(manifest.id, "signature does not match")

		logger.debug(f"Verified plugin {manifest.id} from {manifest.source_origin}")

	def _origin_allowed(self, origin: str) -> bool:
		return bool(origin) and any(
			origin == source or origin.startswith(source.rstrip("/") + "/")
			for source in self.allowed_sources
		)

	def granted_capabilities(self, manifest: PluginManifest) -> frozenset[Capability]:
		"""Capabilities exposed to the plugin while it instantiates."""
		if not self.sandbox:
			return frozenset(manifest.capabilities)
		return frozenset(manifest.capabilities) & self.sandbox_capabilities

	@classmethod
	def from_config(cls, config) -> "SecurityPolicy":
		return cls(
			verify_signatures=config.verify_signatures,
			allowed_sources=tuple(config.allowed_sources),
			signing_key=config.signing_key,
			sandbox=config.sandbox,
		)


DEFAULT_POLICY = SecurityPolicy()


def policy_or_default(policy: Optional[SecurityPolicy]) -> SecurityPolicy:
	return policy if policy is not None else DEFAULT_POLICY
