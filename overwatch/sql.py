"""MySQL sink for sqlInsert reactors."""

import logging
import ssl

import pymysql

from overwatch.errors import ConfigurationError, SqlFailure


def build_ssl_context(ssl_cfg: dict):
    """Build an SSLContext from ``[reactor.db.ssl]``, or None if it is empty."""
    ssl_cfg = {k: v for k, v in (ssl_cfg or {}).items() if v not in (None, "")}
    if not ssl_cfg:
        return None

    ctx = ssl.create_default_context(cafile=ssl_cfg.get("ca"))
    if ssl_cfg.get("cert"):
        ctx.load_cert_chain(ssl_cfg["cert"], ssl_cfg.get("key"))
    try:
        if ssl_cfg.get("min_version"):
            ctx.minimum_version = ssl.TLSVersion[ssl_cfg["min_version"].replace(".", "_")]
        if ssl_cfg.get("max_version"):
            ctx.maximum_version = ssl.TLSVersion[ssl_cfg["max_version"].replace(".", "_")]
    except KeyError as e:
        raise ConfigurationError(f"reactor.db.ssl: unknown TLS version {e}") from e
    if ssl_cfg.get("reject_unauthorized") is False:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


class SqlSink:
    """Executes one statement per connection and commits it."""

    def __init__(self, conn_settings: dict):
        self._conn_settings = conn_settings
        self._log = logging.getLogger("overwatch.sql")

    @classmethod
    def from_config(cls, db_cfg: dict) -> "SqlSink":
        if not db_cfg.get("host"):
            raise ConfigurationError("reactor.db.host is required for sqlInsert")
        settings = {
            "host": db_cfg["host"],
            "port": int(db_cfg.get("port", 3306)),
            "user": db_cfg.get("user"),
            "password": db_cfg.get("password") or "",
            "database": db_cfg.get("name"),
            "autocommit": False,
        }
        ssl_ctx = build_ssl_context(db_cfg.get("ssl"))
        if ssl_ctx is not None:
            settings["ssl"] = ssl_ctx
        return cls(settings)

    def execute(self, statement: str) -> int:
        """Run *statement*; returns the affected row count."""
        try:
            conn = pymysql.connect(**self._conn_settings)
        except pymysql.MySQLError as e:
            raise SqlFailure(statement, e) from e
        try:
            with conn.cursor() as cur:
                affected = cur.execute(statement)
            conn.commit()
            self._log.debug("SQL ok (%d rows): %s", affected, statement)
            return affected
        except pymysql.MySQLError as e:
            raise SqlFailure(statement, e) from e
        finally:
            conn.close()
