# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Control-channel operations.

Each handler takes the request ``args`` dict and returns the fields merged
into the success response. Binary values travel as base64 strings.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any

from ..core.exceptions import RetryExhausted, ValidationError
from ..core.logging import log_client_entry
from ..policy.relay import RelayRequest
from ..transport.policy import TrafficClass

if TYPE_CHECKING:
    from ..node import GchatNode
    from .channel import ControlChannel

logger = logging.getLogger(__name__)


def _require(args: dict[str, Any], key: str, kind: type | tuple[type, ...] = str) -> Any:
    value = args.get(key)
    if value is None or not isinstance(value, kind) or value == "":
        raise ValidationError(f"Missing or invalid '{key}'", field=key)
    return value


def _b64decode(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(f"'{field}' must be base64 text", field=field)
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"'{field}' is not valid base64", field=field) from e


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class ControlHandlers:
    """Binds control-channel operations to a node's components."""

    def __init__(self, node: GchatNode):
        self.node = node

    def register(self, channel: ControlChannel) -> None:
        routes = {
            # Supervisor
            "get-onion-address": self.get_onion_address,
            "get-tor-status": self.get_tor_status,
            "get-tor-keys": self.get_tor_keys,
            "restore-tor-keys": self.restore_tor_keys,
            "restart-tor": self.restart_tor,
            "get-bridges": self.get_bridges,
            "save-bridges": self.save_bridges,
            "factory-reset": self.factory_reset,
            # Key-value config
            "kv:get": self.kv_get,
            "kv:set": self.kv_set,
            "kv:del": self.kv_del,
            # Bulk records
            "db:save": self.db_save,
            "db:sync": self.db_sync,
            "db:get-all": self.db_get_all,
            "db:delete": self.db_delete,
            "db:clear": self.db_clear,
            # Media
            "media:upload": self.media_upload,
            "media:download": self.media_download,
            "media:exists": self.media_exists,
            "media:verify": self.media_verify,
            # Shutdown and logs
            "system-shutdown-prep": self.shutdown_prep,
            "system-shutdown-confirm": self.shutdown_confirm,
            "client-log": self.client_log,
            # Peers
            "ping-peer": self.ping_peer,
            "send-packet": self.send_packet,
            "trust:sync": self.trust_sync,
            "relay:plan-fetch": self.relay_plan_fetch,
            "relay:complete": self.relay_complete,
            # Identity and migration
            "identity:resolve": self.identity_resolve,
            "migration:create": self.migration_create,
            "migration:restore": self.migration_restore,
        }
        for op, handler in routes.items():
            channel.register(op, handler)

    # =========================================================================
    # SUPERVISOR
    # =========================================================================

    async def get_onion_address(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"address": self.node.supervisor.address}

    async def get_tor_status(self, args: dict[str, Any]) -> dict[str, Any]:
        return self.node.supervisor.status.to_dict()

    async def get_tor_keys(self, args: dict[str, Any]) -> dict[str, Any]:
        keys = self.node.supervisor.get_service_keys()
        return {"keys": {name: _b64encode(content) for name, content in keys.items()}}

    async def restore_tor_keys(self, args: dict[str, Any]) -> dict[str, Any]:
        raw = _require(args, "keys", dict)
        keys = {name: _b64decode(value, name) for name, value in raw.items()}
        await self.node.supervisor.restore_service_keys(keys)
        return {"restored": len(keys)}

    async def restart_tor(self, args: dict[str, Any]) -> dict[str, Any]:
        self.node.supervisor.request_restart()
        return {}

    async def get_bridges(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"content": self.node.supervisor.get_bridges()}

    async def save_bridges(self, args: dict[str, Any]) -> dict[str, Any]:
        content = args.get("content") or ""
        if not isinstance(content, str):
            raise ValidationError("'content' must be text", field="content")
        await self.node.supervisor.save_bridges(content)
        return {}

    async def factory_reset(self, args: dict[str, Any]) -> dict[str, Any]:
        await self.node.factory_reset()
        return {}

    # =========================================================================
    # KEY-VALUE
    # =========================================================================

    async def kv_get(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"value": await self.node.store.kv_get(_require(args, "key"))}

    async def kv_set(self, args: dict[str, Any]) -> dict[str, Any]:
        await self.node.store.kv_set(_require(args, "key"), args.get("value"))
        return {}

    async def kv_del(self, args: dict[str, Any]) -> dict[str, Any]:
        await self.node.store.kv_delete(_require(args, "key"))
        return {}

    # =========================================================================
    # BULK RECORDS
    # =========================================================================

    async def db_save(self, args: dict[str, Any]) -> dict[str, Any]:
        await self.node.store.save_item(
            _require(args, "storeName"),
            _require(args, "item", dict),
            _require(args, "ownerId"),
        )
        return {}

    async def db_sync(self, args: dict[str, Any]) -> dict[str, Any]:
        items = _require(args, "items", list)
        await self.node.store.sync_items(_require(args, "storeName"), items, _require(args, "ownerId"))
        return {"count": len(items)}

    async def db_get_all(self, args: dict[str, Any]) -> dict[str, Any]:
        items = await self.node.store.get_items(_require(args, "storeName"), _require(args, "ownerId"))
        return {"items": items}

    async def db_delete(self, args: dict[str, Any]) -> dict[str, Any]:
        item_id = _require(args, "id", (str, int))
        await self.node.store.delete_item(_require(args, "storeName"), str(item_id))
        return {}

    async def db_clear(self, args: dict[str, Any]) -> dict[str, Any]:
        await self.node.store.clear_store(_require(args, "storeName"))
        return {}

    # =========================================================================
    # MEDIA
    # =========================================================================

    async def media_upload(self, args: dict[str, Any]) -> dict[str, Any]:
        media_id = _require(args, "id")
        data = _b64decode(args.get("data"), "data")
        metadata = args.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("'metadata' must be an object", field="metadata")
        await self.node.media.upload(media_id, data, metadata, is_cache=bool(args.get("isCache")))
        return {"size": len(data)}

    async def media_download(self, args: dict[str, Any]) -> dict[str, Any]:
        blob = await self.node.media.download(_require(args, "id"))
        return {"data": _b64encode(blob.data), "metadata": blob.metadata, "cached": blob.cached}

    async def media_exists(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"exists": self.node.media.exists(_require(args, "id"))}

    async def media_verify(self, args: dict[str, Any]) -> dict[str, Any]:
        allowed = await self.node.media.verify(_require(args, "id"), args.get("key"))
        return {"allowed": allowed}

    # =========================================================================
    # SHUTDOWN AND LOGS
    # =========================================================================

    async def shutdown_prep(self, args: dict[str, Any]) -> dict[str, Any]:
        self.node.shutdown.prepare()
        return {}

    async def shutdown_confirm(self, args: dict[str, Any]) -> dict[str, Any]:
        self.node.shutdown.acknowledge()
        return {}

    async def client_log(self, args: dict[str, Any]) -> dict[str, Any]:
        area = args.get("area") or "CLIENT"
        message = str(args.get("message", ""))
        log_client_entry(str(args.get("level") or "info"), f"[{area}] {message}", args.get("details"))
        return {}

    # =========================================================================
    # PEERS
    # =========================================================================

    async def ping_peer(self, args: dict[str, Any]) -> dict[str, Any]:
        target = _require(args, "target")
        try:
            result = await self.node.transport.ping(target)
        except RetryExhausted:
            return {"online": False}
        return {"online": result.ok, "status": result.status}

    async def send_packet(self, args: dict[str, Any]) -> dict[str, Any]:
        target = _require(args, "target")
        payload = _require(args, "payload", dict)
        traffic = TrafficClass.BULK if args.get("streamId") else TrafficClass.CONTROL
        result = await self.node.transport.send_packet(target, payload, traffic)
        return result.to_dict()

    async def trust_sync(self, args: dict[str, Any]) -> dict[str, Any]:
        trusted = self.node.trusted
        peers = args.get("peers")
        contacts = args.get("contacts")
        remove = args.get("remove")
        if isinstance(peers, list):
            trusted.sync_peers(p for p in peers if isinstance(p, str) and p)
        if isinstance(contacts, list):
            trusted.sync_contacts(c for c in contacts if isinstance(c, dict))
        if isinstance(remove, str) and remove:
            trusted.remove(remove)
        return {"trusted": len(trusted)}

    async def relay_plan_fetch(self, args: dict[str, Any]) -> dict[str, Any]:
        request = _relay_request(args)
        plan = await self.node.plan_fetch(request, args.get("source"))
        return plan.to_dict()

    async def relay_complete(self, args: dict[str, Any]) -> dict[str, Any]:
        notified = await self.node.complete_relay(_relay_request(args))
        return {"notified": notified}

    # =========================================================================
    # IDENTITY AND MIGRATION
    # =========================================================================

    async def identity_resolve(self, args: dict[str, Any]) -> dict[str, Any]:
        result = await self.node.ownership.login(
            _require(args, "publicId"),
            claim=bool(args.get("claim", True)),
        )
        return result.to_dict()

    async def migration_create(self, args: dict[str, Any]) -> dict[str, Any]:
        passphrase = args.get("passphrase")
        if passphrase is not None and not isinstance(passphrase, str):
            raise ValidationError("'passphrase' must be text", field="passphrase")
        built = await self.node.migration.build(passphrase or None)
        return {
            "archive": _b64encode(built.archive),
            "passphrase": built.passphrase,
            "timestamp": built.package.timestamp,
        }

    async def migration_restore(self, args: dict[str, Any]) -> dict[str, Any]:
        archive = _b64decode(args.get("archive"), "archive")
        report = await self.node.migration.restore(archive, _require(args, "passphrase"))
        return {"report": report.to_dict()}


def _relay_request(args: dict[str, Any]) -> RelayRequest:
    _require(args, "mediaId")
    return RelayRequest.from_payload(args)
