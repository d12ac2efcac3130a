"""
Builds the collaborators shared by the HTTP app and the operator script.
"""
from __future__ import annotations
from typing import Awaitable, Callable, Tuple

import httpx
import redis.asyncio as redis

from . import config
from .cashfree import Cashfree
from .infra.sql import make_async_engine
from .model.docstore import DocumentStore, new_store
from .model.docstore._sql import create_schema
from .model.records import INDEXES, Records
from .notify import LogMailer, Mailer, Notifier, ResendMailer
from .reconcile import Reconciler
from .tokens import QRSigner

Closer = Callable[[], Awaitable[None]]


def make_http() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=config.HTTP_TIMEOUT,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=32),
    )


async def open_store(
        backend: str = config.STORE_BACKEND) -> Tuple[DocumentStore, Closer]:
    if backend == "sql":
        engine, SessionAsync, gated = make_async_engine(config.DATABASE_URL)
        async with engine.begin() as conn:
            await create_schema(conn)
        docs = new_store(sessions=SessionAsync, gated=gated,
                         indexes=INDEXES, backend="sql")
        return docs, engine.dispose

    r = redis.from_url(
        config.REDIS_URL,
        decode_responses=True,
        max_connections=config.REDIS_MAX_CONN,
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
        retry_on_timeout=True,
    )
    docs = new_store(r=r, indexes=INDEXES, backend="redis")
    return docs, r.aclose


def make_gateway(http: httpx.AsyncClient) -> Cashfree:
    return Cashfree(
        http,
        base_url=config.CASHFREE_BASE,
        app_id=config.CASHFREE_APP_ID,
        secret_key=config.CASHFREE_SECRET_KEY,
        webhook_secrets=(config.CASHFREE_WEBHOOK_SECRET,
                         config.CASHFREE_SECRET_KEY),
        api_version=config.CASHFREE_API_VERSION,
    )


def make_mailer(http: httpx.AsyncClient) -> Mailer:
    if config.RESEND_API_KEY:
        return ResendMailer(http, config.RESEND_API_KEY, config.EMAIL_FROM)
    return LogMailer()


def make_signer() -> QRSigner:
    # no pass is ever minted or checked with a default key
    return QRSigner(config.require("QR_SECRET_KEY"))


def make_reconciler(http: httpx.AsyncClient, docs: DocumentStore,
                    signer: QRSigner) -> Reconciler:
    return Reconciler(
        records=Records(docs),
        gateway=make_gateway(http),
        signer=signer,
        notifier=Notifier(make_mailer(http)),
        qr_expiry_days=config.QR_EXPIRY_DAYS,
    )
