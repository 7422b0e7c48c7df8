from typing import Dict, List, Optional

from pydantic import BaseModel, Field, IPvAnyAddress


class Meta(BaseModel):
    name: str
    version: str
    date: str


class Probe(BaseModel):
    interface: str
    hostname: str
    send_hostname: bool
    timeout_seconds: float = Field(..., gt=0)
    read_poll_seconds: float = Field(..., gt=0)
    strict_xid: bool
    capture_filter: str
    worker_join_seconds: float = Field(..., gt=0)
    source_ip: IPvAnyAddress
    broadcast_ip: IPvAnyAddress
    broadcast_mac: str
    ttl: int = Field(..., ge=1, le=255)
    param_req_list: List[int]
    addresses: List[str]


class LoggingFormatter(BaseModel):
    format: str
    datefmt: str


class LoggingHandler(BaseModel):
    class_: str = Field(..., alias="class")
    level: str
    formatter: str
    stream: Optional[str] = None
    filename: Optional[str] = None
    maxBytes: Optional[int] = None
    backupCount: Optional[int] = None
    encoding: Optional[str] = None


class Logging(BaseModel):
    version: int
    disable_existing_loggers: bool
    formatters: Dict[str, LoggingFormatter]
    handlers: Dict[str, LoggingHandler]
    root: Dict[str, List[str] | str]


class ConfigSchema(BaseModel):
    meta: Meta
    probe: Probe
    logging: Logging
