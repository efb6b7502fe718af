import os
import re
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from logical_queues.constants import DEFAULT_READERS, DEFAULT_WAIT_TIME_SECONDS
from logical_queues.errors import QueueConfigurationError


# Core connection settings
QUEUE_ENDPOINT: str = os.getenv("QUEUE_ENDPOINT", "")
QUEUE_REGION: str = os.getenv("QUEUE_REGION", os.getenv("AWS_REGION", ""))
QUEUE_ACCOUNT_ID: str = os.getenv("QUEUE_ACCOUNT_ID", "")

# Deployment safety valve: "true" disables every subscription, a comma
# separated list disables only the named logical queues.
DISABLE_QUEUE_SUBSCRIPTIONS: str = os.getenv("DISABLE_QUEUE_SUBSCRIPTIONS", "")

_URL_PATTERN = re.compile(r"^https?:", re.IGNORECASE)


def is_queue_url(name: str) -> bool:
    """Return True if ``name`` is already a fully-qualified queue URL."""
    return bool(_URL_PATTERN.match(name))


def parse_disabled_subscriptions(value: Union[bool, str, Sequence[str], None]) -> Union[bool, frozenset[str]]:
    """Parse a subscription kill switch into ``True`` (all disabled) or a set of logical names.

    >>> parse_disabled_subscriptions("true")
    True
    >>> sorted(parse_disabled_subscriptions("orders, audit"))
    ['audit', 'orders']
    >>> parse_disabled_subscriptions(None)
    frozenset()
    """
    if value is None or value is False:
        return frozenset()
    if value is True:
        return True
    if isinstance(value, str):
        v = value.strip()
        if v.lower() in {"1", "true", "yes"}:
            return True
        return frozenset(name.strip() for name in v.split(",") if name.strip())
    return frozenset(str(name) for name in value)


EnvName = Literal["development", "staging", "production"]
ENVIRONMENT: EnvName = os.getenv("ENVIRONMENT", "development").lower()  # type: ignore[assignment]


class Settings(BaseModel):
    """Typed process settings with defaults read from the environment.

    Why this exists:
    - Centralize environment configuration for the queue client and scripts
    - Keep process-wide toggles (like disabling subscriptions) out of the
      client itself; the client reads them once, at construction

    Examples:
    - Point at a local ElasticMQ:
      ```bash
      export QUEUE_ENDPOINT=http://localhost:9324/queue
      export QUEUE_REGION=us-east-1
      ```
    - Keep a deployment from consuming two queues:
      ```bash
      export DISABLE_QUEUE_SUBSCRIPTIONS=orders,audit
      ```
    """
    environment: EnvName = ENVIRONMENT
    queue_endpoint: str = QUEUE_ENDPOINT
    queue_region: str = QUEUE_REGION
    queue_account_id: str = QUEUE_ACCOUNT_ID
    wait_time_seconds: int = int(os.getenv("QUEUE_WAIT_TIME_SECONDS", str(DEFAULT_WAIT_TIME_SECONDS)))
    disable_subscriptions: str = DISABLE_QUEUE_SUBSCRIPTIONS
    metrics_port: int = int(os.getenv("METRICS_PORT", "9000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @model_validator(mode="before")
    @classmethod
    def _read_environment(cls, data: Any) -> Any:
        # Re-read at instantiation so monkeypatched env vars are honored
        if not isinstance(data, dict):
            return data
        env_defaults = {
            "queue_endpoint": os.getenv("QUEUE_ENDPOINT"),
            "queue_region": os.getenv("QUEUE_REGION") or os.getenv("AWS_REGION"),
            "queue_account_id": os.getenv("QUEUE_ACCOUNT_ID"),
            "wait_time_seconds": os.getenv("QUEUE_WAIT_TIME_SECONDS"),
            "disable_subscriptions": os.getenv("DISABLE_QUEUE_SUBSCRIPTIONS"),
            "metrics_port": os.getenv("METRICS_PORT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        merged = {k: v for k, v in env_defaults.items() if v is not None}
        merged.update(data)
        return merged


class EndpointConfig(BaseModel):
    """Connection details for one broker endpoint.

    ``endpoint`` is the base URL queue names are appended to. When omitted,
    the public SQS endpoint for ``region`` is used. Extra keys are passed to
    the transport (e.g. static credentials for a local broker).
    """
    model_config = ConfigDict(extra="allow")

    endpoint: Optional[str] = None
    region: Optional[str] = None
    account_id: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None

    @property
    def base_url(self) -> str:
        if self.endpoint:
            return self.endpoint
        if self.region:
            return f"https://sqs.{self.region}.amazonaws.com"
        raise QueueConfigurationError("Endpoint has neither a base URL nor a region", code="InvalidEndpoint")


class SubscriptionOptions(BaseModel):
    """Polling options for the consumers of one subscription.

    ``handle_message_timeout`` is in milliseconds; ``None`` lets handlers run
    as long as they need. ``visibility_timeout`` of ``None`` uses the queue's
    broker-side default.
    """
    model_config = ConfigDict(extra="forbid")

    readers: Optional[int] = Field(default=None, ge=1)
    wait_time_seconds: int = Field(default=DEFAULT_WAIT_TIME_SECONDS, ge=0, le=20)
    batch_size: int = Field(default=1, ge=1, le=10)
    visibility_timeout: Optional[int] = Field(default=None, ge=0, le=43_200)
    handle_message_timeout: Optional[int] = Field(default=None, gt=0)
    message_attribute_names: list[str] = Field(default_factory=list)
    error_backoff_seconds: float = Field(default=1.0, ge=0)


class QueueConfig(BaseModel):
    """One logical queue after normalization."""
    model_config = ConfigDict(extra="forbid")

    logical_name: str
    name: str
    endpoint: Optional[str] = None
    dead_letter: Optional[str] = None
    readers: int = Field(default=DEFAULT_READERS, ge=1)
    consumer_options: dict[str, Any] = Field(default_factory=dict)


ContextFunction = Callable[[Any, Any], Union[Any, Awaitable[Any]]]


class ClientConfig(BaseModel):
    """Configuration for a ``QueueClient`` or ``MockQueueClient``.

    ``queues`` accepts a single physical name, a list of names or mappings,
    or a mapping from logical name to a physical name or mapping:

    ```python
    ClientConfig(
        region="us-east-1",
        queues={
            "basic": "basic_queue",
            "redrive": {"name": "redrive_queue", "dead_letter": "dead", "readers": 10},
            "dead": "dead_letter_queue",
        },
    )
    ```
    """
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    queues: Union[str, list[Union[str, dict[str, Any]]], dict[str, Union[str, dict[str, Any]]]] = Field(
        default_factory=dict
    )
    endpoint: Optional[Union[str, EndpointConfig]] = None
    region: Optional[str] = None
    account_id: Optional[str] = None
    endpoints: dict[str, EndpointConfig] = Field(default_factory=dict)
    subscriptions: SubscriptionOptions = Field(default_factory=SubscriptionOptions)
    context_function: Optional[ContextFunction] = None
    assumed_role: Optional[str] = None
    disable_subscriptions: Optional[Union[bool, str, list[str]]] = None

    def default_endpoint(self) -> Optional[EndpointConfig]:
        """Return the default endpoint, or ``None`` when neither endpoint nor region is set."""
        if self.endpoint is None and not self.region:
            return None
        if isinstance(self.endpoint, EndpointConfig):
            ep = self.endpoint
            updates: dict[str, Any] = {}
            if ep.region is None and self.region:
                updates["region"] = self.region
            if ep.account_id is None and self.account_id:
                updates["account_id"] = self.account_id
            return ep.model_copy(update=updates) if updates else ep
        return EndpointConfig(endpoint=self.endpoint or None, region=self.region, account_id=self.account_id)

    def normalized_queues(self) -> list[QueueConfig]:
        return normalize_queue_config(self.queues)


def _queue_record(entry: Union[str, Mapping[str, Any]], logical_name: Optional[str] = None) -> dict[str, Any]:
    if isinstance(entry, str):
        record: dict[str, Any] = {"name": entry}
    else:
        record = {_snake(k): v for k, v in entry.items()}
    if logical_name is not None:
        record["logical_name"] = logical_name
    return record


def _snake(key: str) -> str:
    # Accept camelCase keys ("logicalName", "deadLetter") from shared config files
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def normalize_queue_config(
    queues: Union[str, Sequence[Union[str, Mapping[str, Any]]], Mapping[str, Union[str, Mapping[str, Any]]]],
) -> list[QueueConfig]:
    """Normalize every accepted queue configuration shape into ``QueueConfig`` records.

    - ``"name"`` -> one queue whose logical and physical names are ``name``
    - ``["a", {"name": "b", "readers": 2}]`` -> one record per entry
    - ``{"logical": "physical"}`` or ``{"logical": {...}}`` -> keyed by logical name

    Dead-letter names referenced but never declared get a bare entry on the
    referring queue's endpoint so they can be published to. Duplicate logical names raise ``QueueConfigurationError``.

    >>> [q.logical_name for q in normalize_queue_config({"work": {"name": "work_q", "dead_letter": "dead"}})]
    ['work', 'dead']
    """
    if isinstance(queues, str):
        records = [_queue_record(queues)]
    elif isinstance(queues, Mapping):
        records = [_queue_record(cfg, logical_name) for logical_name, cfg in queues.items()]
    else:
        records = [_queue_record(q) for q in queues]

    for record in records:
        if not record.get("name") and not record.get("logical_name"):
            raise QueueConfigurationError("Queue configuration needs a name or logical name", record=record)
        record.setdefault("logical_name", record.get("name"))
        if not record.get("name"):
            record["name"] = record["logical_name"]

    declared = {r["logical_name"] for r in records}
    for record in list(records):
        dead_letter = record.get("dead_letter")
        if dead_letter and dead_letter not in declared:
            synthesized = {"logical_name": dead_letter, "name": dead_letter}
            # Lives next to the queue that redirects to it
            if record.get("endpoint"):
                synthesized["endpoint"] = record["endpoint"]
            records.append(synthesized)
            declared.add(dead_letter)

    normalized: list[QueueConfig] = []
    seen: set[str] = set()
    for record in records:
        cfg = QueueConfig.model_validate(record)
        if cfg.logical_name in seen:
            raise QueueConfigurationError(
                f"Duplicate logical queue name '{cfg.logical_name}'", logical_name=cfg.logical_name
            )
        seen.add(cfg.logical_name)
        normalized.append(cfg)
    return normalized


def resolve_queue_url(name: str, endpoint: EndpointConfig) -> str:
    """Return the physical queue URL for ``name`` on ``endpoint``.

    >>> resolve_queue_url("orders", EndpointConfig(endpoint="http://localhost:9324/", account_id="queue"))
    'http://localhost:9324/queue/orders'
    >>> resolve_queue_url("https://sqs.us-east-1.amazonaws.com/1/orders", EndpointConfig(region="us-east-1"))
    'https://sqs.us-east-1.amazonaws.com/1/orders'
    """
    if is_queue_url(name):
        return name
    base = endpoint.base_url.rstrip("/")
    if endpoint.account_id:
        return f"{base}/{endpoint.account_id}/{name}"
    return f"{base}/{name}"
