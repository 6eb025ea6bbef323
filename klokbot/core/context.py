"""Explicit wiring of the access layer: one instance of each collaborator."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import requests

from .api import ApiClient
from .auth.credentials import CredentialPool, CredentialSource
from .auth.session import AuthSession
from .chat import ChatSession
from .config import GlobalConfig, load_global_config
from .points import UsagePointsGauge
from .retry import RetryExecutor
from .transport import Transport
from .verify import DisabledOutcomeResolver, OutcomeResolver, StreamOutcomeResolver


@dataclass
class KlokContext:
    config: GlobalConfig
    source: CredentialSource
    pool: CredentialPool
    transport: Transport
    executor: RetryExecutor
    auth: AuthSession
    api: ApiClient
    gauge: UsagePointsGauge
    resolver: OutcomeResolver
    chat: ChatSession

    @classmethod
    def build(
        cls,
        config: GlobalConfig | None = None,
        token_file: str | None = None,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> KlokContext:
        config = config or load_global_config()
        source = CredentialSource(token_file or config.credentials.resolved_path())
        pool = CredentialPool(source=source)
        transport = Transport(config.api.base_url, connect_timeout=config.api.connect_timeout, session=session)
        executor = RetryExecutor.from_config(pool, config.retry, sleep=sleep)
        auth = AuthSession(
            pool,
            executor,
            transport,
            session_header=config.api.session_header,
            default_headers=config.api.default_headers,
            timeout=config.api.request_timeout,
        )
        api = ApiClient(transport, executor, auth, timeout=config.api.request_timeout)
        gauge = UsagePointsGauge(api)
        resolver: OutcomeResolver
        if config.verify.enabled:
            resolver = StreamOutcomeResolver(gauge, settle_delay=config.verify.settle_delay, sleep=sleep)
        else:
            resolver = DisabledOutcomeResolver()
        chat = ChatSession(
            api,
            gauge,
            resolver,
            language=config.chat.language,
            timeout=config.api.chat_timeout,
            model=config.chat.default_model,
        )
        return cls(
            config=config,
            source=source,
            pool=pool,
            transport=transport,
            executor=executor,
            auth=auth,
            api=api,
            gauge=gauge,
            resolver=resolver,
            chat=chat,
        )
