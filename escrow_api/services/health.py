# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Health Check Service

Reports the state of MongoDB, Redis and the AMQP broker along with basic
system metrics.
"""

import os
import time
import psutil
from datetime import datetime
from typing import Dict, Any, List
from opentelemetry import trace

from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.redis import RedisService
from escrow_api.services.amqp import AMQPService

tracer = trace.get_tracer(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


def _now() -> str:
    return datetime.utcnow().isoformat() + "Z"


class HealthCheckService:
    """System health monitoring; MongoDB is the only critical dependency."""

    def __init__(self, mongodb_service: MongoDBService, redis_service: RedisService,
                 amqp_service: AMQPService, service_version: str = "1.0.0"):
        self.mongodb_service = mongodb_service
        self.redis_service = redis_service
        self.amqp_service = amqp_service
        self.service_version = service_version

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Health of every dependency plus system metrics."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.time()

            mongodb_health = self._check_mongodb_health()
            redis_health = self._check_redis_health()
            amqp_health = self._check_amqp_health()

            overall_status = self._determine_overall_status(
                mongodb_health["status"],
                [redis_health["status"], amqp_health["status"]]
            )
            response_time_ms = round((time.time() - start_time) * 1000, 2)

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms,
                "health.mongodb_status": mongodb_health["status"],
                "health.redis_status": redis_health["status"],
                "health.amqp_status": amqp_health["status"]
            })

            return {
                "status": overall_status,
                "service": "escrow-ledger-api",
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": _now(),
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "mongodb": mongodb_health,
                    "redis": redis_health,
                    "amqp": amqp_health
                },
                "system_metrics": self._get_system_metrics()
            }

    def get_basic_health(self) -> Dict[str, Any]:
        """Liveness answer that touches no dependency."""
        return {
            "status": HEALTHY,
            "service": "escrow-ledger-api",
            "version": self.service_version,
            "timestamp": _now()
        }

    def _check_mongodb_health(self) -> Dict[str, Any]:
        with tracer.start_as_current_span("health.mongodb_check") as span:
            start_time = time.time()
            result = self.mongodb_service.health_check()
            result["response_time_ms"] = round((time.time() - start_time) * 1000, 2)
            result["last_check"] = _now()
            span.set_attribute("mongodb.status", result["status"])
            return result

    def _check_redis_health(self) -> Dict[str, Any]:
        with tracer.start_as_current_span("health.redis_check") as span:
            try:
                start_time = time.time()
                self.redis_service.ping()
                response_time = round((time.time() - start_time) * 1000, 2)
                info = self.redis_service.get_info()

                span.set_attributes({"redis.status": HEALTHY, "redis.response_time_ms": response_time})
                return {
                    "status": HEALTHY,
                    "response_time_ms": response_time,
                    "version": info.get("redis_version", "unknown"),
                    "memory_usage": info.get("used_memory_human"),
                    "connected_clients": info.get("connected_clients", 0),
                    "last_check": _now()
                }

            except Exception as e:
                span.set_attribute("redis.status", UNHEALTHY)
                span.record_exception(e)
                return {"status": UNHEALTHY, "error": str(e), "last_check": _now()}

    def _check_amqp_health(self) -> Dict[str, Any]:
        with tracer.start_as_current_span("health.amqp_check") as span:
            start_time = time.time()
            healthy = self.amqp_service.health_check()
            response_time = round((time.time() - start_time) * 1000, 2)

            status = HEALTHY if healthy else UNHEALTHY
            span.set_attributes({"amqp.status": status, "amqp.response_time_ms": response_time})

            health_info = {"status": status, "response_time_ms": response_time, "last_check": _now()}
            if not healthy:
                health_info["error"] = "AMQP broker unreachable"
            return health_info

    def _get_system_metrics(self) -> Dict[str, Any]:
        """Get basic system performance metrics."""
        try:
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')

            return {
                "cpu_percent": psutil.cpu_percent(interval=0.1),
                "memory": {
                    "used_mb": round(memory.used / 1024 / 1024, 2),
                    "total_mb": round(memory.total / 1024 / 1024, 2),
                    "percent": memory.percent
                },
                "disk": {
                    "used_gb": round(disk.used / 1024 / 1024 / 1024, 2),
                    "total_gb": round(disk.total / 1024 / 1024 / 1024, 2),
                    "percent": round((disk.used / disk.total) * 100, 2)
                },
                "load_average": list(os.getloadavg()) if hasattr(os, 'getloadavg') else None
            }
        except (OSError, psutil.Error) as e:
            return {"error": f"Failed to collect system metrics: {str(e)}"}

    @staticmethod
    def _determine_overall_status(critical_status: str, other_statuses: List[str]) -> str:
        """Unhealthy when MongoDB is down, degraded when anything else is."""
        if critical_status != HEALTHY:
            return UNHEALTHY
        if all(status == HEALTHY for status in other_statuses):
            return HEALTHY
        return DEGRADED
