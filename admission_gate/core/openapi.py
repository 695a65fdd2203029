"""OpenAPI customization for the admin surface.

Adds the ``X-API-Key`` security scheme and tag descriptions. Only the admin
endpoints require the key; health probes are marked ``security: []``.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

TAGS_METADATA = [
    {
        "name": "Admin",
        "description": "Rate-limit statistics and manual retention purges.",
    },
    {
        "name": "Health",
        "description": "Liveness checks; never gated.",
    },
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with security and tags."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key (APP_API_KEYS).",
            },
        )

        tags = schema.setdefault("tags", [])
        known = {t.get("name") for t in tags}
        tags.extend(tag for tag in TAGS_METADATA if tag["name"] not in known)

        for path, methods in schema.get("paths", {}).items():
            requirement = [{"ApiKeyAuth": []}] if path.startswith("/api/admin/") else []
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = requirement

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
