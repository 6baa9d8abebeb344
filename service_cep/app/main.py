"""
CEP lookup service.
"""

import asyncio
from typing import Dict, Optional

import httpx
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import CepNotFoundError, CepServiceException, ErrorResponse, InvalidCepError
from shared.logging import request_id_var, set_cep_context

from .adapters.viacep_client import ViaCepClient
from .lookup.service import LookupService
from .persistence.postgres import PostgresCepStore


class CepService(BaseService):
    """CEP lookup service implementation.

    When a prebuilt ``lookup`` is given the service does not manage any
    store or HTTP client of its own.
    """

    def __init__(self, lookup: Optional[LookupService] = None, config: Optional[ServiceConfig] = None):
        self.lookup = lookup
        self._owns_lookup = lookup is None
        self.store: Optional[PostgresCepStore] = None
        self.provider: Optional[ViaCepClient] = None

        super().__init__("cep", config)

        self._setup_cep_routes()

    def _setup_cep_routes(self):
        """Set up lookup routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "cep",
                "message": "CEP Lookup Service",
                "version": "1.0.0",
                "capabilities": ["lookup", "caching", "persistence"]
            }

        @self.app.get("/cep/{cep}")
        async def get_cep(cep: str):
            """Resolve a CEP into its address record."""
            set_cep_context(cep)

            try:
                record = await self.lookup.get(cep, timeout=self.config.lookup_timeout)
            except (InvalidCepError, CepNotFoundError):
                raise
            except asyncio.TimeoutError:
                self.logger.error("Timed out looking up cep", cep=cep, timeout=self.config.lookup_timeout)
                self.metrics.record_error("LOOKUP_TIMEOUT")
                return self._error_response(504, "LOOKUP_TIMEOUT", "cep lookup timed out")
            except CepServiceException as e:
                self.logger.error("Error looking up cep", cep=cep, code=e.code, error=e.message, details=e.details)
                self.metrics.record_error(e.code)
                return self._error_response(500, e.code, "failed to look up CEP")

            return record.model_dump(exclude_none=True)

        @self.app.get("/healthz")
        async def healthz():
            """Liveness of the cache store."""
            try:
                await self.lookup.ping(timeout=self.config.health_timeout)
            except asyncio.TimeoutError:
                self.metrics.record_health_check("error")
                return JSONResponse(status_code=503, content={"status": "error", "detail": "ping timed out"})
            except Exception as e:
                self.metrics.record_health_check("error")
                return JSONResponse(status_code=503, content={"status": "error", "detail": str(e)})

            self.metrics.record_health_check("ok")
            return {"status": "ok"}

    def _error_response(self, status_code: int, code: str, message: str) -> JSONResponse:
        body = ErrorResponse(request_id=request_id_var.get(), code=code, message=message)
        return JSONResponse(status_code=status_code, content=body.model_dump())

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check lookup service dependencies."""
        dependencies = {}

        try:
            await self.lookup.ping(timeout=self.config.health_timeout)
            dependencies["postgres"] = "ok"
        except Exception:
            dependencies["postgres"] = "error"

        return dependencies

    async def start(self):
        """Open the cache store and the directory client."""
        await super().start()
        if not self._owns_lookup:
            return

        self.store = PostgresCepStore(self.config.resolve_dsn())
        await self.store.start()

        self.provider = ViaCepClient(
            httpx.AsyncClient(timeout=self.config.http_client_timeout),
            base_url=self.config.viacep_base_url
        )
        self.lookup = LookupService(
            self.store,
            self.provider,
            cache_ttl=self.config.cache_ttl_seconds,
            metrics=self.metrics
        )

        self.logger.info(
            "CEP service started",
            addr=self.config.http_addr,
            cache_ttl_seconds=self.config.cache_ttl_seconds
        )

    async def stop(self):
        """Close the directory client and the cache store."""
        if not self._owns_lookup:
            return

        if self.provider is not None:
            await self.provider.aclose()
        if self.store is not None:
            await self.store.stop()

        self.logger.info("CEP service stopped")


def create_app(lookup: Optional[LookupService] = None, config: Optional[ServiceConfig] = None):
    """Create CEP service application."""
    service = CepService(lookup=lookup, config=config)
    return service.app


if __name__ == "__main__":
    service = CepService()
    service.run()
