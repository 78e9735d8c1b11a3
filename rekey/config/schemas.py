"""Settings file schema for rekey."""

IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_$]*$"

SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "env_file": {
            "type": "string",
            "description": "Config record holding secret values, relative to the project dir",
        },
        "env_example": {
            "type": "string",
            "description": "Template copied into place when the config record is missing",
        },
        "init_marker": {"type": "string"},
        "backup_dir": {"type": "string"},
        "timeout_seconds": {
            "type": "integer",
            "minimum": 5,
            "maximum": 30,
        },
        "token_issuer": {"type": "string", "minLength": 1},
        "database": {
            "type": "object",
            "properties": {
                "container": {
                    "type": ["string", "null"],
                    "description": "Database container name (defaults to <INSTANCE_NAME>-db)",
                },
                "superuser": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                "name": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                "roles": {
                    "type": "array",
                    "items": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                    "minItems": 1,
                    "uniqueItems": True,
                },
                "jwt_setting": {
                    "type": "string",
                    "pattern": r"^[A-Za-z_][A-Za-z0-9_.]*$",
                },
                "data_dir": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "encrypted_store": {
            "type": "object",
            "properties": {
                "database": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                "table": {
                    "type": "string",
                    "pattern": r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$",
                },
                "service": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "services": {
            "type": "object",
            "properties": {
                "password_dependents": {
                    "type": "array",
                    "items": {"type": "string"},
                },
            },
            "additionalProperties": False,
        },
        "backups": {
            "type": "object",
            "properties": {
                "keep_database_dumps": {"type": "integer", "minimum": 1},
                "dump_timeout_seconds": {"type": "integer", "minimum": 30},
            },
            "additionalProperties": False,
        },
        "health": {
            "type": "object",
            "properties": {
                "containers": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1},
                    "description": "Container names; {instance} is replaced with INSTANCE_NAME",
                },
                "api_url": {"type": "string", "pattern": "^https?://"},
                "endpoints": {
                    "type": "object",
                    "additionalProperties": {"type": "string", "pattern": "^/"},
                },
                "endpoint_timeout_seconds": {"type": "integer", "minimum": 1, "maximum": 30},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}
