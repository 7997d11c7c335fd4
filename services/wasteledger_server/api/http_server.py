"""
HTTP server implementation for the waste ledger.

This module provides the REST API over WasteLedger. It's the surrounding
service layer that serializes entries, versions, grants and notes for
external consumers.

Invariants:
    - Every mutating endpoint requires the X-Actor header (authenticated upstream)
    - Reads are public; no header is needed
    - JSON request/response format, digests as lowercase hex
    - Ledger errors map to stable HTTP statuses (see status_for_error)

How to change safely:
    - Keep routes in sync with WasteLedger operations
    - Add request models for new bodies instead of reading raw JSON
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from aiohttp import web
from pydantic import BaseModel, Field
from pydantic import ValidationError as RequestValidationError

from ..config import HttpConfig
from ..errors import (
    LedgerError,
    LimitReachedError,
    NotAuthorizedError,
    NotFoundError,
    NotOwnerError,
    NotPausedError,
    PausedError,
)
from ..records.canonical_store import StoreNotInitializedError
from ..records.ledger import WasteLedger
from ..records.models import MAX_INTEGER, digest_from_hex

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# =============================================================================
# Request Models
# =============================================================================


class RegisterRequest(BaseModel):
    """Register a waste entry."""
    digest: str = Field(..., description="Content digest, hex encoded")
    category_label: str = Field(..., description="Waste type label")
    quantity: int = Field(..., description="Positive quantity")
    unit: str = Field(default="", description="Unit of quantity")
    description: str = Field(default="", description="Free text description")
    location: str = Field(default="", description="Where the waste is held")
    at: int | None = Field(
        None, ge=0, le=MAX_INTEGER, description="Ordering counter (defaults to server clock)"
    )


class TransferRequest(BaseModel):
    """Transfer ownership of an entry."""
    new_owner: str = Field(..., min_length=1, description="Identity of the new owner")


class VerifyRequest(BaseModel):
    """Check a digest against the registration digest."""
    digest: str = Field(..., description="Digest to compare, hex encoded")


class VersionRequest(BaseModel):
    """Append a version."""
    digest: str = Field(..., description="Updated digest, hex encoded")
    notes: str = Field(default="", description="What changed")
    at: int | None = Field(None, ge=0, le=MAX_INTEGER)


class CategoryRequest(BaseModel):
    """Replace an entry's category."""
    label: str = Field(..., description="Category label")
    tags: list[str] = Field(default_factory=list, description="Ordered tags")


class CollaboratorRequest(BaseModel):
    """Grant a role and permissions to a collaborator."""
    role: str = Field(..., description="Role label")
    permissions: list[str] = Field(default_factory=list, description="Ordered permission tokens")
    at: int | None = Field(None, ge=0, le=MAX_INTEGER)


class StatusRequest(BaseModel):
    """Overwrite an entry's status."""
    status: str = Field(..., description="Status label")
    visibility: bool = Field(default=True, description="Whether the entry is publicly listed")
    at: int | None = Field(None, ge=0, le=MAX_INTEGER)


class NoteRequest(BaseModel):
    """Append a compliance note."""
    note: str = Field(..., description="Note text")
    at: int | None = Field(None, ge=0, le=MAX_INTEGER)


# =============================================================================
# Application
# =============================================================================


def status_for_error(error: LedgerError) -> int:
    """Map a ledger error to an HTTP status code."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (NotOwnerError, NotAuthorizedError)):
        return 403
    if isinstance(error, (PausedError, NotPausedError, LimitReachedError)):
        return 409
    return 400


def _json_error(status: int, message: str, error_code: str, **extra: Any) -> web.Response:
    return web.json_response({"error": message, "error_code": error_code, **extra}, status=status)


def create_http_app(
    ledger: WasteLedger,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for the waste ledger.

    Args:
        ledger: WasteLedger instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    def route(handler: Callable) -> Callable:
        return lambda r: handler(r, ledger)

    app.router.add_post("/v1/entries", route(handle_register))
    app.router.add_get("/v1/entries/{entry_id}", route(handle_get_entry))
    app.router.add_post("/v1/entries/{entry_id}/transfer", route(handle_transfer))
    app.router.add_post("/v1/entries/{entry_id}/verify", route(handle_verify))
    app.router.add_post("/v1/entries/{entry_id}/versions", route(handle_append_version))
    app.router.add_get("/v1/entries/{entry_id}/versions", route(handle_list_versions))
    app.router.add_get("/v1/entries/{entry_id}/versions/{version}", route(handle_get_version))
    app.router.add_put("/v1/entries/{entry_id}/category", route(handle_set_category))
    app.router.add_get("/v1/entries/{entry_id}/category", route(handle_get_category))
    app.router.add_get("/v1/entries/{entry_id}/collaborators", route(handle_list_collaborators))
    app.router.add_put(
        "/v1/entries/{entry_id}/collaborators/{identity}", route(handle_add_collaborator)
    )
    app.router.add_get(
        "/v1/entries/{entry_id}/collaborators/{identity}", route(handle_get_collaborator)
    )
    app.router.add_get(
        "/v1/entries/{entry_id}/collaborators/{identity}/permissions/{token}",
        route(handle_has_permission),
    )
    app.router.add_put("/v1/entries/{entry_id}/status", route(handle_set_status))
    app.router.add_get("/v1/entries/{entry_id}/status", route(handle_get_status))
    app.router.add_post("/v1/entries/{entry_id}/notes", route(handle_add_note))
    app.router.add_get("/v1/entries/{entry_id}/notes", route(handle_list_notes))
    app.router.add_get("/v1/entries/{entry_id}/notes/{note_id}", route(handle_get_note))
    app.router.add_get("/v1/ledger", route(handle_ledger_state))
    app.router.add_post("/v1/ledger/pause", route(handle_pause))
    app.router.add_post("/v1/ledger/unpause", route(handle_unpause))
    app.router.add_get("/v1/health", route(handle_health))

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = web.Response(status=e.status, text=e.text, content_type=e.content_type)

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor, X-Trace-ID"

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except LedgerError as e:
            return web.json_response(e.to_dict(), status=status_for_error(e))
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return _json_error(500, str(e), "INTERNAL")

    # Inner middleware, so ledger errors still get CORS headers
    app.middlewares.append(error_middleware)

    return app


# =============================================================================
# Request helpers
# =============================================================================


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "BAD_REQUEST"}),
        content_type="application/json",
    )


def extract_actor(request: web.Request) -> str:
    """Extract the caller identity from headers.

    Raises:
        web.HTTPBadRequest: If X-Actor is missing
    """
    actor = request.headers.get("X-Actor")
    if not actor:
        raise _bad_request("X-Actor header is required")
    return actor


def _int_param(request: web.Request, name: str) -> int:
    try:
        value = int(request.match_info[name])
    except ValueError:
        raise _bad_request(f"{name} must be an integer")
    if not 0 <= value <= MAX_INTEGER:
        raise _bad_request(f"{name} is out of range")
    return value


def _decode_digest(value: str) -> bytes:
    try:
        return digest_from_hex(value)
    except ValueError:
        raise _bad_request("digest must be hex encoded")


async def parse_body(request: web.Request, model: type[ModelT]) -> ModelT:
    """Parse and validate a JSON body.

    Raises:
        web.HTTPBadRequest: If the body is not JSON
        web.HTTPUnprocessableEntity: If the body fails validation
    """
    try:
        body = await request.json()
    except ValueError:  # JSONDecodeError or UnicodeDecodeError
        raise _bad_request("Invalid JSON body")

    try:
        return model.model_validate(body)
    except RequestValidationError as e:
        raise web.HTTPUnprocessableEntity(
            text=json.dumps(
                {
                    "error": "Request validation failed",
                    "error_code": "REQUEST_INVALID",
                    "details": json.loads(e.json()),
                }
            ),
            content_type="application/json",
        )


def _not_found(**ids: Any) -> web.Response:
    return web.json_response({"found": False, **ids}, status=404)


def _require_entry(ledger: WasteLedger, entry_id: int) -> None:
    if ledger.get_entry(entry_id) is None:
        raise NotFoundError(entry_id)


# =============================================================================
# Record store
# =============================================================================


async def handle_register(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/entries - Register a waste entry."""
    actor = extract_actor(request)
    body = await parse_body(request, RegisterRequest)

    entry_id = ledger.register(
        actor,
        _decode_digest(body.digest),
        body.category_label,
        body.quantity,
        body.unit,
        body.description,
        body.location,
        at=body.at,
    )
    return web.json_response({"entry_id": entry_id}, status=201)


async def handle_get_entry(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id} - Get entry details."""
    entry_id = _int_param(request, "entry_id")

    entry = ledger.get_entry(entry_id)
    if entry is None:
        return _not_found(entry_id=entry_id)
    return web.json_response({"found": True, "entry": entry.to_dict()})


async def handle_transfer(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/entries/{entry_id}/transfer - Transfer ownership."""
    actor = extract_actor(request)
    entry_id = _int_param(request, "entry_id")
    body = await parse_body(request, TransferRequest)

    ledger.transfer_ownership(actor, entry_id, body.new_owner)
    return web.json_response({"success": True})


async def handle_verify(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/entries/{entry_id}/verify - Compare a digest."""
    entry_id = _int_param(request, "entry_id")
    body = await parse_body(request, VerifyRequest)

    valid = ledger.verify_entry(entry_id, _decode_digest(body.digest))
    return web.json_response({"entry_id": entry_id, "valid": valid})


# =============================================================================
# Version log
# =============================================================================


async def handle_append_version(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/entries/{entry_id}/versions - Append a version."""
    actor = extract_actor(request)
    entry_id = _int_param(request, "entry_id")
    body = await parse_body(request, VersionRequest)

    version = ledger.append_version(
        actor, entry_id, _decode_digest(body.digest), body.notes, at=body.at
    )
    return web.json_response({"entry_id": entry_id, "version": version}, status=201)


async def handle_list_versions(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/versions - Version history."""
    entry_id = _int_param(request, "entry_id")
    _require_entry(ledger, entry_id)

    versions = ledger.list_versions(entry_id)
    return web.json_response({"entry_id": entry_id, "versions": [v.to_dict() for v in versions]})


async def handle_get_version(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/versions/{version} - One version."""
    entry_id = _int_param(request, "entry_id")
    number = _int_param(request, "version")

    version = ledger.get_version(entry_id, number)
    if version is None:
        return _not_found(entry_id=entry_id, version=number)
    return web.json_response({"found": True, "version": version.to_dict()})


# =============================================================================
# Category index
# =============================================================================


async def handle_set_category(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle PUT /v1/entries/{entry_id}/category - Replace category."""
    actor = extract_actor(request)
    entry_id = _int_param(request, "entry_id")
    body = await parse_body(request, CategoryRequest)

    ledger.set_category(actor, entry_id, body.label, body.tags)
    return web.json_response({"success": True})


async def handle_get_category(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/category - Current category."""
    entry_id = _int_param(request, "entry_id")

    category = ledger.get_category(entry_id)
    if category is None:
        return _not_found(entry_id=entry_id)
    return web.json_response({"found": True, "category": category.to_dict()})


# =============================================================================
# Collaborator registry
# =============================================================================


async def handle_add_collaborator(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle PUT /v1/entries/{entry_id}/collaborators/{identity} - Grant."""
    actor = extract_actor(request)
    entry_id = _int_param(request, "entry_id")
    identity = request.match_info["identity"]
    body = await parse_body(request, CollaboratorRequest)

    ledger.add_collaborator(actor, entry_id, identity, body.role, body.permissions, at=body.at)
    return web.json_response({"success": True})


async def handle_get_collaborator(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/collaborators/{identity} - One grant."""
    entry_id = _int_param(request, "entry_id")
    identity = request.match_info["identity"]

    grant = ledger.get_collaborator(entry_id, identity)
    if grant is None:
        return _not_found(entry_id=entry_id, collaborator=identity)
    return web.json_response({"found": True, "collaborator": grant.to_dict()})


async def handle_list_collaborators(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/collaborators - All grants in join order."""
    entry_id = _int_param(request, "entry_id")
    _require_entry(ledger, entry_id)

    grants = ledger.list_collaborators(entry_id)
    return web.json_response(
        {"entry_id": entry_id, "collaborators": [g.to_dict() for g in grants]}
    )


async def handle_has_permission(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET .../collaborators/{identity}/permissions/{token} - Membership test."""
    entry_id = _int_param(request, "entry_id")
    identity = request.match_info["identity"]
    token = request.match_info["token"]

    allowed = ledger.has_permission(entry_id, identity, token)
    return web.json_response(
        {"entry_id": entry_id, "collaborator": identity, "permission": token, "allowed": allowed}
    )


# =============================================================================
# Status tracker
# =============================================================================


async def handle_set_status(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle PUT /v1/entries/{entry_id}/status - Overwrite status."""
    actor = extract_actor(request)
    entry_id = _int_param(request, "entry_id")
    body = await parse_body(request, StatusRequest)

    ledger.set_status(actor, entry_id, body.status, body.visibility, at=body.at)
    return web.json_response({"success": True})


async def handle_get_status(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/status - Current status."""
    entry_id = _int_param(request, "entry_id")

    status = ledger.get_status(entry_id)
    if status is None:
        return _not_found(entry_id=entry_id)
    return web.json_response({"found": True, "status": status.to_dict()})


# =============================================================================
# Compliance log
# =============================================================================


async def handle_add_note(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/entries/{entry_id}/notes - Append a compliance note."""
    actor = extract_actor(request)
    entry_id = _int_param(request, "entry_id")
    body = await parse_body(request, NoteRequest)

    note_id = ledger.add_note(actor, entry_id, body.note, at=body.at)
    return web.json_response({"entry_id": entry_id, "note_id": note_id}, status=201)


async def handle_list_notes(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/notes - Compliance log."""
    entry_id = _int_param(request, "entry_id")
    _require_entry(ledger, entry_id)

    notes = ledger.list_notes(entry_id)
    return web.json_response({"entry_id": entry_id, "notes": [n.to_dict() for n in notes]})


async def handle_get_note(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/entries/{entry_id}/notes/{note_id} - One note."""
    entry_id = _int_param(request, "entry_id")
    note_id = _int_param(request, "note_id")

    note = ledger.get_note(entry_id, note_id)
    if note is None:
        return _not_found(entry_id=entry_id, note_id=note_id)
    return web.json_response({"found": True, "note": note.to_dict()})


# =============================================================================
# Pause switch
# =============================================================================


async def handle_ledger_state(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/ledger - Pause flag, admin and entry count."""
    return web.json_response(ledger.get_state().to_dict())


async def handle_pause(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/ledger/pause - Engage the pause switch."""
    actor = extract_actor(request)
    ledger.pause(actor)
    return web.json_response({"success": True, "paused": True})


async def handle_unpause(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle POST /v1/ledger/unpause - Release the pause switch."""
    actor = extract_actor(request)
    ledger.unpause(actor)
    return web.json_response({"success": True, "paused": False})


async def handle_health(request: web.Request, ledger: WasteLedger) -> web.Response:
    """Handle GET /v1/health - Health check."""
    try:
        state = ledger.get_state()
    except StoreNotInitializedError as e:
        return web.json_response({"healthy": False, "error": str(e)}, status=503)
    return web.json_response({"healthy": True, "paused": state.paused})


async def run_http_server(
    ledger: WasteLedger,
    config: HttpConfig | None = None,
) -> None:
    """Run the HTTP server until cancelled.

    Args:
        ledger: WasteLedger instance
        config: HTTP server configuration
    """
    config = config or HttpConfig()
    app = create_http_app(ledger, config)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")

    # Keep running until cancelled
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
