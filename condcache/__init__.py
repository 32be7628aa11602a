from condcache._config import Config as Config
from condcache._engine import CacheEngine as CacheEngine
from condcache._exceptions import (
    CacheWriteError as CacheWriteError,
    CondCacheError as CondCacheError,
    EntryNotFound as EntryNotFound,
    ExitCode as ExitCode,
    HeaderParseError as HeaderParseError,
    IntegrityError as IntegrityError,
    ProtocolError as ProtocolError,
    StorageError as StorageError,
    TransportError as TransportError,
    UsageError as UsageError,
)
from condcache._fetcher import ConditionalFetcher as ConditionalFetcher
from condcache._headers import Headers as Headers
from condcache._keygen import ArtifactKind as ArtifactKind, ResourceKey as ResourceKey, storage_key as storage_key
from condcache._logging import configure_logging as configure_logging
from condcache._states import (
    AnyState as AnyState,
    CachedStale as CachedStale,
    CachedValid as CachedValid,
    ConditionalUnsupported as ConditionalUnsupported,
    Fresh200 as Fresh200,
    FromCache as FromCache,
    HeadersOnly as HeadersOnly,
    IdleClient as IdleClient,
    NeedRevalidation as NeedRevalidation,
    NotCached as NotCached,
    State as State,
    StoreAndUse as StoreAndUse,
    UseWithoutStoring as UseWithoutStoring,
)
from condcache._stats import StatsRecorder as StatsRecorder, StatsReport as StatsReport
from condcache._storage import Store as Store
from condcache._tools import check_cache as check_cache, diff_cache as diff_cache, list_cache_files as list_cache_files
from condcache._version import __version__ as __version__
from condcache.models import (
    CacheEntry as CacheEntry,
    Classification as Classification,
    FetchOutcome as FetchOutcome,
    Method as Method,
    QuietFailure as QuietFailure,
    QuietReason as QuietReason,
    RequestMode as RequestMode,
    RequestOptions as RequestOptions,
    Served as Served,
    Timings as Timings,
    Validators as Validators,
)

__all__ = (
    ## Engine
    "CacheEngine",
    "Config",
    "configure_logging",
    "ConditionalFetcher",
    "Store",
    "StatsRecorder",
    "StatsReport",
    ## States
    "AnyState",
    "State",
    "IdleClient",
    "NotCached",
    "NeedRevalidation",
    "Fresh200",
    "CachedValid",
    "CachedStale",
    "ConditionalUnsupported",
    "HeadersOnly",
    "FromCache",
    "StoreAndUse",
    "UseWithoutStoring",
    ## Models
    "ArtifactKind",
    "ResourceKey",
    "storage_key",
    "CacheEntry",
    "Classification",
    "FetchOutcome",
    "Method",
    "QuietFailure",
    "QuietReason",
    "RequestMode",
    "RequestOptions",
    "Served",
    "Timings",
    "Validators",
    "Headers",
    ## Tools
    "check_cache",
    "diff_cache",
    "list_cache_files",
    ## Errors
    "ExitCode",
    "CondCacheError",
    "UsageError",
    "StorageError",
    "EntryNotFound",
    "TransportError",
    "HeaderParseError",
    "IntegrityError",
    "CacheWriteError",
    "ProtocolError",
)
