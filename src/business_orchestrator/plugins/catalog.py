"""Built-in manifests for the platform's core, shared and business plugins."""

from .models import Capability, LoadingStrategy, PluginCategory, PluginManifest

ALL_TENANTS = ("intellitrade", "salarium", "latinos", "capacita", "cms")
SOURCE = "@paulovila"


def _manifest(
	plugin_id: str,
	category: PluginCategory,
	capabilities: set[Capability],
	depends_on: tuple[str, ...] = (),
	contexts: tuple[str, ...] = ALL_TENANTS,
	config: dict | None = None,
	append_keys: tuple[str, ...] = (),
	strategy: LoadingStrategy = LoadingStrategy.EAGER,
) -> PluginManifest:
	return PluginManifest(
		id=plugin_id,
		name=f"{SOURCE}/{plugin_id}",
		version="1.0.0",
		category=category,
		depends_on=depends_on,
		loading_strategy=strategy,
		capabilities=frozenset(capabilities),
		source_origin=SOURCE,
		supported_contexts=contexts,
		config=config or {},
		append_keys=append_keys,
	)


def _collections(*slugs: str) -> dict:
	return {"collections": [{"slug": slug} for slug in slugs]}


BUILTIN_MANIFESTS: tuple[PluginManifest, ...] = (
	_manifest(
		"core-auth", PluginCategory.CORE, {Capability.AUTH, Capability.COLLECTIONS},
		config=_collections("users"), append_keys=("collections",),
	),
	_manifest("core-database", PluginCategory.CORE, {Capability.DATABASE}),
	_manifest(
		"core-api", PluginCategory.CORE, {Capability.API, Capability.ENDPOINTS},
		depends_on=("core-auth", "core-database"),
	),
	_manifest(
		"intellitrade-kyc", PluginCategory.BUSINESS, {Capability.COLLECTIONS, Capability.HOOKS},
		depends_on=("core-api",), contexts=("intellitrade",),
		config=_collections("kyc-applications", "kyc-templates", "verification-documents"),
		append_keys=("collections",),
	),
	_manifest(
		"intellitrade-blockchain", PluginCategory.BUSINESS, {Capability.COLLECTIONS, Capability.JOBS},
		depends_on=("intellitrade-kyc",), contexts=("intellitrade",),
		config=_collections("escrow-agreements", "milestones", "milestone-evidence", "payment-releases"),
		append_keys=("collections",),
	),
	_manifest(
		"salarium-hr", PluginCategory.BUSINESS, {Capability.COLLECTIONS},
		depends_on=("core-api",), contexts=("salarium",),
		config=_collections("employees", "departments"), append_keys=("collections",),
	),
	_manifest(
		"salarium-payroll", PluginCategory.BUSINESS, {Capability.COLLECTIONS, Capability.JOBS},
		depends_on=("salarium-hr",), contexts=("salarium",),
		config=_collections("payroll-runs"), append_keys=("collections",),
	),
	_manifest(
		"latinos-trading", PluginCategory.BUSINESS, {Capability.COLLECTIONS, Capability.ENDPOINTS},
		depends_on=("core-api",), contexts=("latinos",),
		config=_collections("trading-bots", "market-data"), append_keys=("collections",),
	),
	_manifest(
		"capacita-training", PluginCategory.BUSINESS, {Capability.COLLECTIONS},
		depends_on=("core-api",), contexts=("capacita",),
		config=_collections("courses", "skill-evaluations"), append_keys=("collections",),
	),
	_manifest(
		"shared-analytics", PluginCategory.SHARED, {Capability.ANALYTICS, Capability.GLOBALS},
		depends_on=("core-api",), strategy=LoadingStrategy.LAZY,
	),
	_manifest(
		"shared-notifications", PluginCategory.SHARED, {Capability.NOTIFICATIONS, Capability.JOBS},
		depends_on=("core-api",), strategy=LoadingStrategy.LAZY,
	),
)


def builtin_manifests() -> list[PluginManifest]:
	return list(BUILTIN_MANIFESTS)
