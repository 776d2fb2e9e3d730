"""Pydantic configuration models for nvimrpc.

These models describe how to attach to a peer and what this client announces
about itself. They are only used at startup; the wire path works on plain
lists and the dataclasses in ``nvimrpc.wire``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

LogLevel = Literal["error", "warn", "info", "http", "verbose", "debug", "silly"]

ClientType = Literal["remote", "msgpack-rpc", "ui", "embedder", "host", "plugin"]


class ClientVersion(BaseModel):
    """Version dictionary sent with the client info.

    Attributes:
        major: Major version (the peer assumes 0 if unset)
        minor: Minor version
        patch: Patch number
        prerelease: Prerelease tag, like "dev" or "beta1"
        commit: Commit hash or similar identifier
    """

    major: int | None = Field(default=None, ge=0)
    minor: int | None = Field(default=None, ge=0)
    patch: int | None = Field(default=None, ge=0)
    prerelease: str | None = None
    commit: str | None = None


class MethodSpec(BaseModel):
    """Description of one method this client serves."""

    model_config = ConfigDict(populate_by_name=True)

    is_async: bool | None = Field(default=None, alias="async")
    nargs: int | None = Field(default=None, ge=0)


class ClientInfo(BaseModel):
    """Identification announced to the peer right after connecting.

    ``name`` also shows up in the peer's channel list, which is how a plugin
    can find its own channel from the editor side.

    Attributes:
        name: Short client name (required, non-empty)
        version: Client version
        type: Client kind; "msgpack-rpc" for a fully compliant client
        methods: Methods served by this client, keyed by name
        attributes: Free-form string properties (website, license, ...)
    """

    name: str
    version: ClientVersion = Field(default_factory=ClientVersion)
    type: ClientType = "msgpack-rpc"
    methods: dict[str, MethodSpec] = Field(default_factory=dict)
    attributes: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Client name cannot be empty")
        return v

    def to_wire_args(self) -> list[Any]:
        """Arguments for the ``nvim_set_client_info`` call."""
        return [
            self.name,
            self.version.model_dump(exclude_none=True),
            self.type,
            {
                name: spec.model_dump(by_alias=True, exclude_none=True)
                for name, spec in self.methods.items()
            },
            dict(self.attributes),
        ]


class LoggingConfig(BaseModel):
    """Application logger settings.

    Attributes:
        level: Minimum level, using the error/warn/info/http/verbose/debug/silly
            scale. Levels above "debug" hide the engine's internal messages.
        file: Path of a log file; ``~`` is expanded
    """

    level: LogLevel | None = None
    file: str | None = None


class SessionConfig(BaseModel):
    """Tuning knobs for ``RpcSession``.

    Attributes:
        read_chunk_size: Maximum bytes read from a socket at once
        api_info_method: Bootstrap call used to discover the channel id
        client_info_method: Call used to announce ``ClientInfo``
    """

    read_chunk_size: int = Field(default=64 * 1024, gt=0)
    api_info_method: str = Field(default="nvim_get_api_info", min_length=1)
    client_info_method: str = Field(default="nvim_set_client_info", min_length=1)


class AttachConfig(BaseModel):
    """Everything needed by ``attach()``.

    Attributes:
        socket: Unix socket path, "host:port" TCP address, or ws:// URL.
            Child processes started by Neovim find it in ``$NVIM``.
        client: Client info sent on connect
        logging: Application logger settings; ``None`` disables it
        options: Session tuning
    """

    socket: str = Field(..., description="Address of the peer")
    client: ClientInfo
    logging: LoggingConfig | None = None
    options: SessionConfig = Field(default_factory=SessionConfig)

    @field_validator("socket")
    @classmethod
    def validate_socket(cls, v: str) -> str:
        if not v:
            raise ValueError("Socket address cannot be empty")
        return v
