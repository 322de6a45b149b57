#!/usr/bin/env python3
"""
Wallix Bastion Exporter CLI - Main entry point

Serves Prometheus metrics gathered from the Wallix Bastion API. Each HTTP
pull on the telemetry path triggers one scrape of the bastion.
"""

import gzip
import logging
import socket
import sys
from http.server import HTTPServer, BaseHTTPRequestHandler
from socketserver import ThreadingMixIn

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_client.core import CollectorRegistry

from .config import ExporterConfig, load_config
from .errors import ConfigError
from .exporter import WallixBastionExporter

logger = logging.getLogger('wallix_bastion_exporter')


class ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
    """HTTP Server with threading support for concurrent requests"""
    daemon_threads = True
    allow_reuse_address = True
    # A second exporter on the same port must fail to bind
    allow_reuse_port = False


class ThreadedHTTPServerV6(ThreadedHTTPServer):
    address_family = socket.AF_INET6


def server_class_for(host: str):
    """IPv6 literals (e.g. "::") need an AF_INET6 socket"""
    return ThreadedHTTPServerV6 if ':' in host else ThreadedHTTPServer


def make_handler(registry: CollectorRegistry, telemetry_path: str):
    """Build a request handler class bound to a registry"""

    class MetricsHandler(BaseHTTPRequestHandler):
        """Renders the registry on the telemetry path and redirects / to it"""

        def log_message(self, format, *args):
            logger.debug(f"{self.address_string()} - {format % args}")

        def do_GET(self):
            path = self.path.split('?', 1)[0]
            if path == telemetry_path:
                self._serve_metrics()
            elif path == '/':
                try:
                    self.send_response(308)
                    self.send_header('Location', telemetry_path)
                    self.end_headers()
                except (BrokenPipeError, ConnectionResetError):
                    pass
            else:
                try:
                    self.send_error(404, "Not Found")
                except (BrokenPipeError, ConnectionResetError):
                    pass

        def _serve_metrics(self):
            try:
                response_data = generate_latest(registry)
                use_gzip = 'gzip' in self.headers.get('Accept-Encoding', '')
                if use_gzip:
                    response_data = gzip.compress(response_data, compresslevel=6)

                self.send_response(200)
                self.send_header('Content-Type', CONTENT_TYPE_LATEST)
                if use_gzip:
                    self.send_header('Content-Encoding', 'gzip')
                self.send_header('Content-Length', str(len(response_data)))
                self.end_headers()
                self.wfile.write(response_data)
            except (BrokenPipeError, ConnectionResetError):
                # Client disconnected
                pass
            except Exception as e:
                logger.error(f"Error serving metrics: {e}", exc_info=True)
                try:
                    self.send_error(500, f"Internal Server Error: {e}")
                except (BrokenPipeError, ConnectionResetError):
                    pass

    return MetricsHandler


def build_registry(config: ExporterConfig) -> CollectorRegistry:
    registry = CollectorRegistry()
    registry.register(WallixBastionExporter(config))
    return registry


def serve(config: ExporterConfig) -> ThreadedHTTPServer:
    """Create the HTTP server; raises OSError when the address cannot be bound"""
    host, port = config.listen_host_port()
    registry = build_registry(config)
    server_class = server_class_for(host)
    return server_class((host, port), make_handler(registry, config.telemetry_path))


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(argv)
    except ConfigError as e:
        logger.error(f"cannot load config: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(getattr(logging, config.log_level))
    logger.info(f"Starting exporter with {config}")

    try:
        server = serve(config)
    except ConfigError as e:
        logger.error(f"cannot load config: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"cannot listen on {config.listen_address}: {e}")
        sys.exit(1)

    logger.info(f"Exposing metrics on {config.listen_address}{config.telemetry_path}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        server.server_close()
    sys.exit(0)


if __name__ == '__main__':
    main()
