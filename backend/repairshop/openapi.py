"""Minimal deterministic OpenAPI spec builder.

Scope:
- Auth endpoints: /auth/login (POST), /auth/me (GET)
- For each tracked entity: list + single GET & HEAD with caching headers
- Staff action endpoints (POST) with their required permissions
- Public widget endpoints (X-API-Key)

Lifecycle schemas carry `x-transitions` taken from the runtime state machines, so the
document cannot drift from what the API enforces.
"""
from typing import Any, Dict, List, Tuple

from repairshop.utils.fsm import APPOINTMENT_FSM, TICKET_FSM

__all__ = ["build_openapi_spec", "ENTITIES", "ACTION_REGISTRY", "SORT_DETAILS"]

# (SchemaName, collection path, id param, read permission)
ENTITIES: List[Tuple[str, str, str, str]] = [
    ("Appointment", "/appointments", "appointment_id", "APPT.READ"),
    ("RepairTicket", "/orders", "ticket_id", "TICKET.READ"),
    ("Customer", "/customers", "customer_id", "CUSTOMER.READ"),
    ("Device", "/devices", "device_id", "DEVICE.READ"),
]

ACTION_REGISTRY: Dict[str, List[Dict[str, Any]]] = {
    "Appointment": [
        {"action": "confirm", "summary": "Confirm appointment", "permission": ["APPT.MANAGE"]},
        {"action": "check-in", "summary": "Check in appointment", "permission": ["APPT.MANAGE"]},
        {"action": "cancel", "summary": "Cancel appointment", "permission": ["APPT.MANAGE"]},
        {"action": "no-show", "summary": "Mark appointment as no-show", "permission": ["APPT.MANAGE"]},
        {"action": "convert", "summary": "Convert appointment to repair ticket",
         "permission": ["APPT.MANAGE", "TICKET.MANAGE"], "status": "201", "returns": "RepairTicket"},
    ],
    "RepairTicket": [
        {"action": "status", "summary": "Change ticket status", "permission": ["TICKET.CHANGE_STATUS"]},
        {"action": "timer/start", "summary": "Start work timer", "permission": ["TICKET.CHANGE_STATUS"]},
        {"action": "timer/stop", "summary": "Stop work timer", "permission": ["TICKET.CHANGE_STATUS"],
         "returns": "TimeEntry"},
        {"action": "notes", "summary": "Add ticket note", "permission": ["TICKET.READ"], "status": "201",
         "returns": "TicketNote"},
    ],
}

SORT_DETAILS = {
    "Appointment": "Multi-field sort (scheduled_date,scheduled_time,status,created_at,updated_at,id). Prefix - for desc",
    "RepairTicket": "Multi-field sort (ticket_number,status,priority,created_at,updated_at,id). Prefix - for desc",
    "Customer": "Multi-field sort (name,email,created_at,updated_at,id). Prefix - for desc",
    "Device": "Multi-field sort (brand,name,release_date,updated_at,id). Prefix - for desc",
}

PROPERTIES: Dict[str, Dict[str, str]] = {
    "Appointment": {
        "id": "integer", "appointment_number": "string", "customer_id": "integer", "device_id": "integer",
        "scheduled_date": "string", "scheduled_time": "string", "duration_minutes": "integer",
        "status": "string", "urgency": "string", "source": "string", "assigned_to": "integer",
        "estimated_cost_cents": "integer", "converted_to_ticket_id": "integer",
    },
    "RepairTicket": {
        "id": "integer", "ticket_number": "string", "customer_id": "integer", "device_id": "integer",
        "status": "string", "priority": "string", "estimated_cost_cents": "integer",
        "actual_cost_cents": "integer", "assigned_to": "integer", "appointment_id": "integer",
        "timer_started_at": "string", "timer_user_id": "integer", "total_time_minutes": "integer",
    },
    "Customer": {"id": "integer", "name": "string", "email": "string", "phone": "string"},
    "Device": {"id": "integer", "brand": "string", "model_name": "string", "name": "string",
               "external_id": "string", "image_url": "string", "is_active": "boolean"},
    "Service": {"id": "integer", "name": "string", "category": "string", "base_price_cents": "integer"},
    "TimeEntry": {"id": "integer", "ticket_id": "integer", "user_id": "integer", "start_time": "string",
                  "end_time": "string", "duration_minutes": "integer"},
    "TicketNote": {"id": "integer", "ticket_id": "integer", "note_type": "string", "content": "string"},
}


def _schema(name: str) -> Dict[str, Any]:
    props = {k: {"type": t} for k, t in PROPERTIES[name].items()}
    return {"type": "object", "properties": props, "required": ["id"]}


def _caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
    }


def _rate_limit_headers() -> Dict[str, Any]:
    return {
        "X-RateLimit-Limit": {"schema": {"type": "integer"}},
        "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
        "X-RateLimit-Reset": {"schema": {"type": "integer"}},
    }


def _ref(name: str) -> Dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _entity_paths(schema_name: str, list_path: str, id_param: str, perm: str) -> Dict[str, Any]:
    single_path = f"{list_path}/{{{id_param}}}"
    id_params = [{"name": id_param, "in": "path", "required": True, "schema": {"type": "integer"}}]
    paths: Dict[str, Any] = {
        list_path: {
            "get": {
                "summary": f"List {list_path.strip('/')}",
                "parameters": [
                    {"$ref": "#/components/parameters/LimitParam"},
                    {"$ref": "#/components/parameters/OffsetParam"},
                    {"name": "sort", "in": "query", "schema": {"type": "string"},
                     "description": SORT_DETAILS[schema_name]},
                ],
                "responses": {
                    "200": {
                        "description": "OK",
                        "headers": _caching_headers(),
                        "content": {"application/json": {"schema": {
                            "type": "object",
                            "properties": {
                                "data": {"type": "array", "items": _ref(schema_name)},
                                "pagination": _ref("Pagination"),
                            },
                        }}},
                    },
                    "304": {"description": "Not Modified"},
                    "400": {"$ref": "#/components/responses/BadRequest"},
                },
                "x-required-permissions": [perm],
            },
            "head": {
                "summary": f"{schema_name} list validators",
                "responses": {
                    "200": {"description": "Headers only", "headers": _caching_headers()},
                    "304": {"description": "Not Modified"},
                },
                "x-required-permissions": [perm],
            },
        },
        single_path: {
            "get": {
                "summary": f"Get {schema_name}",
                "parameters": id_params,
                "responses": {
                    "200": {"description": "OK", "headers": _caching_headers(),
                            "content": {"application/json": {"schema": _ref(schema_name)}}},
                    "304": {"description": "Not Modified"},
                    "404": {"$ref": "#/components/responses/NotFound"},
                },
                "x-required-permissions": [perm],
            },
            "head": {
                "summary": f"{schema_name} validators",
                "parameters": id_params,
                "responses": {
                    "200": {"description": "Headers only", "headers": _caching_headers()},
                    "304": {"description": "Not Modified"},
                    "404": {"$ref": "#/components/responses/NotFound"},
                },
                "x-required-permissions": [perm],
            },
        },
    }
    for spec in ACTION_REGISTRY.get(schema_name, []):
        paths[f"{single_path}/{spec['action']}"] = {
            "post": {
                "summary": spec["summary"],
                "parameters": id_params,
                "responses": {
                    spec.get("status", "200"): {
                        "description": "OK",
                        "content": {"application/json": {"schema": _ref(spec.get("returns", schema_name))}},
                    },
                    "400": {"$ref": "#/components/responses/BadRequest"},
                    "404": {"$ref": "#/components/responses/NotFound"},
                },
                "x-required-permissions": list(spec["permission"]),
            }
        }
    return paths


def _public_paths() -> Dict[str, Any]:
    def op(summary: str, status: str = "200", params=None, permission=None) -> Dict[str, Any]:
        body = {
            "summary": summary,
            "security": [{"ApiKeyAuth": []}],
            "responses": {
                status: {"description": "OK", "headers": _rate_limit_headers()},
                "401": {"$ref": "#/components/responses/Unauthorized"},
                "403": {"$ref": "#/components/responses/Forbidden"},
                "429": {"$ref": "#/components/responses/TooManyRequests"},
            },
        }
        if params:
            body["parameters"] = params
        if permission:
            body["x-api-key-permission"] = permission
        return body

    return {
        "/public/services": {"get": op("Active repair services")},
        "/public/devices": {"get": op("Active catalog devices")},
        "/public/availability": {"get": op(
            "Bookable 30-minute slots for a date",
            params=[{"name": "date", "in": "query", "required": True, "schema": {"type": "string", "format": "date"}}],
        )},
        "/public/appointments": {"post": op("Book an appointment", status="201", permission="form_submission")},
        "/public/status": {"post": op("Look up ticket or appointment status")},
    }


def build_openapi_spec() -> Dict[str, Any]:
    schemas = {name: _schema(name) for name in PROPERTIES}
    schemas["Appointment"]["x-transitions"] = APPOINTMENT_FSM.as_openapi()
    schemas["Appointment"]["x-actions"] = {
        name: {"from": sorted(src), "to": dst} for name, (src, dst) in APPOINTMENT_FSM.actions.items()
    }
    schemas["RepairTicket"]["x-transitions"] = TICKET_FSM.as_openapi()
    schemas["RepairTicket"]["x-actions"] = {
        name: {"from": sorted(src), "to": dst} for name, (src, dst) in TICKET_FSM.actions.items()
    }
    schemas["Pagination"] = {
        "type": "object",
        "properties": {
            "total": {"type": "integer"},
            "limit": {"type": "integer"},
            "offset": {"type": "integer"},
            "returned": {"type": "integer"},
        },
        "required": ["total", "limit", "offset", "returned"],
    }
    schemas["Error"] = {
        "type": "object",
        "properties": {
            "error": {
                "type": "object",
                "properties": {"status": {"type": "integer"}, "title": {"type": "string"}, "detail": {"type": "string"}},
            },
            "timestamp": {"type": "string"},
        },
        "required": ["error"],
    }

    error_content = {"application/json": {"schema": _ref("Error")}}
    components: Dict[str, Any] = {
        "schemas": schemas,
        "responses": {
            "BadRequest": {"description": "Bad Request", "content": error_content},
            "Unauthorized": {"description": "Unauthorized", "content": error_content},
            "Forbidden": {"description": "Forbidden", "content": error_content},
            "NotFound": {"description": "Not Found", "content": error_content},
            "Conflict": {"description": "Conflict", "content": error_content},
            "TooManyRequests": {"description": "Rate limit exceeded", "headers": _rate_limit_headers()},
        },
        "securitySchemes": {
            "BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"},
            "ApiKeyAuth": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
        },
        "parameters": {
            "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50}},
            "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
        },
    }

    paths: Dict[str, Any] = {
        "/auth/login": {"post": {
            "summary": "Login",
            "security": [],
            "responses": {"200": {"description": "JWT issued"}, "401": {"$ref": "#/components/responses/Unauthorized"},
                          "429": {"$ref": "#/components/responses/TooManyRequests"}},
        }},
        "/auth/me": {"get": {"summary": "Current user", "responses": {"200": {"description": "OK"}}}},
    }
    for schema_name, list_path, id_param, perm in ENTITIES:
        paths.update(_entity_paths(schema_name, list_path, id_param, perm))
    paths["/appointments/{appointment_id}"]["patch"] = {
        "summary": "Update appointment (assignment, status, notes)",
        "responses": {"200": {"description": "OK", "content": {"application/json": {"schema": _ref("Appointment")}}},
                      "400": {"$ref": "#/components/responses/BadRequest"}},
        "x-required-permissions": ["APPT.MANAGE"],
    }
    paths["/orders/{ticket_id}/assign"] = {"patch": {
        "summary": "Assign ticket to a technician",
        "responses": {"200": {"description": "OK", "content": {"application/json": {"schema": _ref("RepairTicket")}}},
                      "400": {"$ref": "#/components/responses/BadRequest"}},
        "x-required-permissions": ["TICKET.ASSIGN"],
    }}
    paths.update(_public_paths())

    tag_desc: Dict[str, str] = {}
    for path, ops in paths.items():
        tag = path.split("/")[1].capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
            od["operationId"] = f"{method}_{rid}"
            od["tags"] = [tag]
        tag_desc[tag] = f"{tag} endpoints"

    return {
        "openapi": "3.0.3",
        "info": {"title": "Repair Shop Dashboard API", "version": "0.1.0"},
        "paths": paths,
        "components": components,
        "security": [{"BearerAuth": []}],
        "tags": [{"name": n, "description": d} for n, d in sorted(tag_desc.items())],
    }
