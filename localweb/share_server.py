#!/usr/bin/env python3
"""
LocalWeb: Password-Protected Local Network File Share

Serves one directory over HTTP (and HTTPS when a certificate is present)
behind a single Basic credential. Browsers get a tree view of the share and
an upload page; uploads are streamed into a fixed subdirectory of the share.
"""

import asyncio
import argparse
import base64
import binascii
import logging
import os
import secrets
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import uvicorn
import yaml
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, PlainTextResponse, Response
from fastapi.security.utils import get_authorization_scheme_param
from pydantic import BaseModel, Field

from directory_tree import DirectoryTreeResponse, ListingUnavailable, build_tree
from pages import render_browse_page, render_listing_page, render_upload_page
from share_storage import (
    InvalidPath,
    UploadError,
    ingest_upload,
    is_temp_upload,
    resolve_share_path,
    resolve_upload_target,
    upload_root,
)
from worker_pool import WorkerConfig, WorkerPool

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
access_logger = logging.getLogger("localweb.access")


# ============================================================================
# Configuration Models
# ============================================================================

class ServerConfig(BaseModel):
    """Server configuration"""
    host: str = "0.0.0.0"
    port: int = 8080
    workers: int = 8
    chunk_size: int = 1024 * 1024  # 1MB writes while ingesting uploads
    task_timeout: float = 60.0  # seconds per directory walk


class TLSConfig(BaseModel):
    """HTTPS listener, served alongside the plaintext port"""
    enabled: bool = True
    port: int = 8443
    cert_file: str = "certs/server.crt"
    key_file: str = "certs/server.key"


class ShareConfig(BaseModel):
    """Shared directory configuration"""
    root: str = "."
    upload_dir: str = "Upload"
    max_depth: int = 32


class SecurityConfig(BaseModel):
    """Shared credential"""
    username: str = "admin"
    password: str = "admin"
    realm: str = "LocalWeb"


class CompressionConfig(BaseModel):
    """Compression configuration"""
    enabled: bool = True
    minimum_size: int = 1000
    level: int = 6


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    access_log: Optional[str] = None


class AppConfig(BaseModel):
    """Application configuration"""
    server: ServerConfig = Field(default_factory=ServerConfig)
    tls: TLSConfig = Field(default_factory=TLSConfig)
    share: ShareConfig = Field(default_factory=ShareConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config_from_file(config_file: str) -> AppConfig:
    """Load configuration from YAML file"""
    with open(config_file, 'r') as f:
        config_dict = yaml.safe_load(f) or {}
    return AppConfig(**config_dict)


def parse_size(size_str: str) -> int:
    """Parse size string (e.g., '1MB') to bytes"""
    units = {'TB': 1024**4, 'GB': 1024**3, 'MB': 1024**2, 'KB': 1024, 'B': 1}
    size_str = size_str.upper().strip()
    number, multiplier = size_str, 1

    for unit, unit_bytes in units.items():
        if size_str.endswith(unit):
            number, multiplier = size_str[:-len(unit)], unit_bytes
            break

    try:
        size = int(float(number) * multiplier)
    except (ValueError, OverflowError):
        raise ValueError(f"Invalid size format: {size_str}")
    if size <= 0:
        raise ValueError(f"Invalid size format: {size_str}")
    return size


ENV_OVERRIDES = {
    "LOCALWEB_DIR": ("share", "root"),
    "LOCALWEB_USER": ("security", "username"),
    "LOCALWEB_PASSWORD": ("security", "password"),
}


def apply_env_overrides(config: AppConfig, environ=None) -> AppConfig:
    """Override config values from LOCALWEB_* environment variables"""
    environ = os.environ if environ is None else environ
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value:
            setattr(getattr(config, section), key, value)
    return config


# ============================================================================
# Authentication Functions
# ============================================================================

def parse_basic_credentials(authorization: Optional[str]) -> Optional[Tuple[str, str]]:
    """Extract (username, password) from a Basic Authorization header"""
    scheme, param = get_authorization_scheme_param(authorization)
    if not authorization or scheme.lower() != "basic":
        return None

    try:
        decoded = base64.b64decode(param, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    username, separator, password = decoded.partition(":")
    if not separator:
        return None
    return username, password


def credentials_match(presented: Tuple[str, str], security: SecurityConfig) -> bool:
    """Compare against the configured credential in constant time"""
    username, password = presented
    user_ok = secrets.compare_digest(username.encode("utf-8"), security.username.encode("utf-8"))
    password_ok = secrets.compare_digest(password.encode("utf-8"), security.password.encode("utf-8"))
    return user_ok and password_ok


def unauthorized_response(realm: str) -> PlainTextResponse:
    return PlainTextResponse(
        "Access denied",
        status_code=401,
        headers={"WWW-Authenticate": f'Basic realm="{realm}"'},
    )


# ============================================================================
# Access Log
# ============================================================================

def format_access_line(
    client: str,
    timestamp: datetime,
    method: str,
    url: str,
    status_code: int,
    elapsed_ms: float
) -> str:
    """One CSV-like access log line"""
    return f"{client}, {timestamp.isoformat(timespec='seconds')}, {method}, {url}, {status_code}, {elapsed_ms:.3f} ms"


def configure_logging(logging_config: LoggingConfig):
    """Apply the configured level and attach the access log file, if any"""
    logging.getLogger().setLevel(getattr(logging, logging_config.level.upper()))

    if logging_config.access_log:
        handler = logging.FileHandler(logging_config.access_log)
        handler.setFormatter(logging.Formatter("%(message)s"))
        access_logger.addHandler(handler)
        logger.info(f"Writing access log to {logging_config.access_log}")


# ============================================================================
# FastAPI Application
# ============================================================================

def create_app(config: AppConfig) -> FastAPI:
    """
    Build the LocalWeb application.

    The share root and credential are fixed here for the lifetime of the
    returned app; handlers only read them.
    """
    share_root = Path(config.share.root).expanduser().resolve()
    uploads = upload_root(share_root, config.share.upload_dir)
    upload_dir_name = uploads.relative_to(share_root).as_posix()
    if upload_dir_name == ".":
        raise ValueError("share.upload_dir must name a subdirectory of the share")

    worker_pool = WorkerPool(WorkerConfig(
        max_workers=config.server.workers,
        task_timeout=config.server.task_timeout,
        no_retry=(ListingUnavailable,),
    ))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown"""
        if not worker_pool.started:
            await worker_pool.start()

        yield

        await worker_pool.shutdown(wait=True)
        logger.info(f"Worker pool metrics: {worker_pool.get_metrics()}")

    app = FastAPI(
        title="LocalWeb",
        description="Password-protected local network file share",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.share_root = share_root
    app.state.upload_dir = uploads
    app.state.worker_pool = worker_pool

    async def share_tree(directory: Path, max_depth: int):
        """Walk a share directory on the worker pool"""
        rel_path = directory.relative_to(share_root).as_posix()
        rel_path = "" if rel_path == "." else rel_path
        result = await worker_pool.submit_task(
            f"tree:/{rel_path}", build_tree, directory, rel_path, max_depth
        )
        if not result.success:
            if isinstance(result.exception, ListingUnavailable):
                raise result.exception
            raise ListingUnavailable(result.error or "Directory listing failed")
        return rel_path, result.result

    # ------------------------------------------------------------------------
    # Middleware: registered innermost first
    # ------------------------------------------------------------------------

    @app.middleware("http")
    async def require_credentials(request: Request, call_next):
        """Reject every request that does not carry the shared credential"""
        presented = parse_basic_credentials(request.headers.get("Authorization"))
        if presented is None or not credentials_match(presented, config.security):
            client = request.client.host if request.client else "-"
            logger.debug(f"Rejected unauthenticated {request.method} {request.url.path} from {client}")
            return unauthorized_response(config.security.realm)
        return await call_next(request)

    if config.compression.enabled:
        app.add_middleware(
            GZipMiddleware,
            minimum_size=config.compression.minimum_size,
            compresslevel=config.compression.level,
        )

    @app.middleware("http")
    async def log_access(request: Request, call_next):
        """Write one access log line per request"""
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            url = request.url.path + (f"?{request.url.query}" if request.url.query else "")
            access_logger.info(format_access_line(
                request.client.host if request.client else "-",
                datetime.now(timezone.utc),
                request.method,
                url,
                status_code,
                elapsed_ms,
            ))

    # ------------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------------

    @app.get("/", response_class=HTMLResponse)
    async def serve_browser():
        """Browsing page with the full share tree"""
        try:
            _, tree = await share_tree(share_root, config.share.max_depth)
        except ListingUnavailable as e:
            logger.error(f"Cannot list share root: {e}")
            return HTMLResponse(render_browse_page([]), status_code=500)
        return HTMLResponse(render_browse_page(tree))

    @app.get("/upload-ui", response_class=HTMLResponse)
    async def serve_upload_page():
        """Upload page with folder picker"""
        return HTMLResponse(
            content=render_upload_page(upload_dir_name),
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
        )

    @app.get("/api/directory-tree")
    async def directory_tree(path: str = ""):
        """Share tree as JSON, optionally rooted at a subdirectory"""
        try:
            directory = resolve_share_path(share_root, path)
        except InvalidPath as e:
            return JSONResponse({"error": f"Invalid path: {e}"}, status_code=400)

        if not directory.exists():
            return JSONResponse({"error": "Directory not found"}, status_code=404)
        if not directory.is_dir():
            return JSONResponse({"error": "Not a directory"}, status_code=400)

        try:
            rel_path, tree = await share_tree(directory, config.share.max_depth)
        except ListingUnavailable as e:
            logger.error(f"Directory tree failed for {directory}: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)

        return DirectoryTreeResponse(root="/" + rel_path, tree=tree)

    @app.put("/upload/{file_path:path}")
    async def upload_file(file_path: str, request: Request):
        """Stream the raw request body into the upload directory"""
        try:
            target = resolve_upload_target(uploads, file_path)
        except InvalidPath as e:
            return PlainTextResponse(f"Invalid path: {e}", status_code=400)

        try:
            size = await ingest_upload(target, request.stream(), config.server.chunk_size)
        except UploadError as e:
            return PlainTextResponse(f"Upload failed: {e}", status_code=500)

        logger.info(f"Uploaded {target.relative_to(share_root).as_posix()} ({size} bytes)")
        return PlainTextResponse("File uploaded successfully", status_code=201)

    # Must stay last: matches every other GET
    @app.get("/{file_path:path}")
    async def serve_share(file_path: str) -> Response:
        """Serve a file from the share, or an index page for a directory"""
        try:
            target = resolve_share_path(share_root, file_path)
        except InvalidPath as e:
            return PlainTextResponse(f"Invalid path: {e}", status_code=400)

        if not target.exists() or is_temp_upload(target.name):
            return PlainTextResponse("Not found", status_code=404)

        if target.is_dir():
            try:
                rel_path, entries = await share_tree(target, 1)
            except ListingUnavailable as e:
                logger.error(f"Cannot list {target}: {e}")
                rel_path = target.relative_to(share_root).as_posix()
                return HTMLResponse(render_listing_page(rel_path, []), status_code=500)
            return HTMLResponse(render_listing_page(rel_path, entries))

        return FileResponse(path=str(target))

    return app


# ============================================================================
# Serving
# ============================================================================

def build_servers(app: FastAPI, config: AppConfig) -> List[uvicorn.Server]:
    """Plaintext server, plus an HTTPS one when the certificate files exist"""
    log_level = config.logging.level.lower()
    servers = [uvicorn.Server(uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=log_level,
        access_log=False,
    ))]

    tls = config.tls
    if tls.enabled:
        cert_file, key_file = Path(tls.cert_file), Path(tls.key_file)
        if cert_file.is_file() and key_file.is_file():
            # The plaintext server owns the lifespan (worker pool)
            servers.append(uvicorn.Server(uvicorn.Config(
                app,
                host=config.server.host,
                port=tls.port,
                ssl_certfile=str(cert_file),
                ssl_keyfile=str(key_file),
                lifespan="off",
                log_level=log_level,
                access_log=False,
            )))
        else:
            logger.warning(
                f"TLS certificate {cert_file} or key {key_file} not found; serving HTTP only"
            )

    return servers


async def serve(servers: List[uvicorn.Server]):
    """Run all servers until one of them stops, then stop the rest"""
    tasks = [asyncio.create_task(server.serve()) for server in servers]
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

    for server in servers:
        server.should_exit = True
    await asyncio.gather(*pending, return_exceptions=True)

    for task in done:
        task.result()


# ============================================================================
# CLI and Main
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LocalWeb - password-protected local network file share"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file (YAML)"
    )
    parser.add_argument(
        "--dir",
        type=str,
        help="Directory to share (default: current directory)"
    )
    parser.add_argument(
        "--upload-dir",
        type=str,
        help="Upload subdirectory inside the share (default: Upload)"
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Host to bind to (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        help="HTTP port (default: 8080)"
    )
    parser.add_argument(
        "--https-port",
        type=int,
        help="HTTPS port (default: 8443)"
    )
    parser.add_argument(
        "--cert",
        type=str,
        help="TLS certificate file (default: certs/server.crt)"
    )
    parser.add_argument(
        "--key",
        type=str,
        help="TLS private key file (default: certs/server.key)"
    )
    parser.add_argument(
        "--no-tls",
        action="store_true",
        help="Serve plain HTTP only"
    )
    parser.add_argument(
        "--user",
        type=str,
        help="Username for the shared credential"
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of worker threads for directory walks (default: 8)"
    )
    parser.add_argument(
        "--chunk-size",
        type=parse_size,
        help="Write size for uploads, e.g. 512KB or 4MB (default: 1MB)"
    )
    parser.add_argument(
        "--access-log",
        type=str,
        help="Append access log lines to this file"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    return parser


def config_from_args(args: argparse.Namespace, environ=None) -> AppConfig:
    """Defaults, then YAML file, then LOCALWEB_* environment, then flags"""
    config = load_config_from_file(args.config) if args.config else AppConfig()
    apply_env_overrides(config, environ)

    overrides = [
        (args.dir, config.share, "root"),
        (args.upload_dir, config.share, "upload_dir"),
        (args.host, config.server, "host"),
        (args.port, config.server, "port"),
        (args.workers, config.server, "workers"),
        (args.chunk_size, config.server, "chunk_size"),
        (args.https_port, config.tls, "port"),
        (args.cert, config.tls, "cert_file"),
        (args.key, config.tls, "key_file"),
        (args.user, config.security, "username"),
        (args.access_log, config.logging, "access_log"),
        (args.log_level, config.logging, "level"),
    ]
    for value, section, key in overrides:
        if value is not None:
            setattr(section, key, value)
    if args.no_tls:
        config.tls.enabled = False
    return config


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    config = config_from_args(args)
    configure_logging(config.logging)

    share_root = Path(config.share.root).expanduser()
    try:
        share_root.mkdir(parents=True, exist_ok=True)
        app = create_app(config)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot share {share_root}: {e}")
        sys.exit(1)

    if config.security.password == SecurityConfig().password:
        logger.warning("Using the default password; set LOCALWEB_PASSWORD or security.password")

    servers = build_servers(app, config)

    logger.info("=" * 60)
    logger.info("LocalWeb - Local Network File Share")
    logger.info("=" * 60)
    logger.info(f"Share Directory: {app.state.share_root}")
    logger.info(f"Upload Directory: {app.state.upload_dir}")
    logger.info(f"User: {config.security.username}")
    logger.info(f"Compression: {'Enabled' if config.compression.enabled else 'Disabled'}")
    logger.info("=" * 60)
    logger.info(f"Serving on http://{config.server.host}:{config.server.port}")
    if len(servers) > 1:
        logger.info(f"Serving on https://{config.server.host}:{config.tls.port}")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 60)

    try:
        asyncio.run(serve(servers))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()
