"""HTTP surface for triggering ingestion and polling job status."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from newsharvest.bootstrap import build_coordinator, build_store
from newsharvest.config import Settings, load_settings
from newsharvest.errors import (
    BudgetExhausted,
    ConfigMissing,
    DatabaseError,
    IngestionError,
    JobNotFound,
    ThemeNotFound,
)
from newsharvest.pipeline.coordinator import IngestionCoordinator
from newsharvest.pipeline.models import TRIGGER_TYPES, TriggerType
from newsharvest.storage.job_store import JobStore

logger = logging.getLogger(__name__)

TRIGGER_LIMIT = "10 per minute"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def create_app(
    store: Optional[JobStore] = None,
    coordinator: Optional[IngestionCoordinator] = None,
    settings: Optional[Settings] = None,
) -> Flask:
    settings = settings or load_settings()
    store = store or build_store(settings)
    coordinator = coordinator or build_coordinator(settings, store)
    tracker = coordinator.tracker
    budget = coordinator.budget

    app = Flask(__name__)
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=["1000 per day", "100 per hour"],
        storage_uri="memory://",
    )
    limiter.init_app(app)

    def _theme_and_config(theme_ref: str):
        theme = coordinator.resolve_theme(theme_ref)
        return theme, coordinator.resolve_config(theme)

    @app.route("/api/health")
    @limiter.exempt
    def health_check():
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store": settings.store_backend,
        })

    @app.route("/api/themes/<theme_ref>/ingestion/trigger", methods=["POST"])
    @limiter.limit(TRIGGER_LIMIT)
    def trigger_ingestion(theme_ref):
        data = request.get_json(silent=True) or {}
        trigger_type = str(data.get("triggerType") or TriggerType.MANUAL.value)
        if trigger_type not in TRIGGER_TYPES:
            return jsonify({"success": False, "error": f"triggerType must be one of: {', '.join(TRIGGER_TYPES)}"}), 400
        result = coordinator.trigger(theme_ref, trigger_type=trigger_type)
        return jsonify({"success": True, **result.to_dict()})

    @app.route("/api/themes/<theme_ref>/ingestion/<job_id>/status")
    @limiter.exempt
    def ingestion_status(theme_ref, job_id):
        theme = coordinator.resolve_theme(theme_ref)
        view = tracker.status(job_id, theme_id=theme.id)
        return jsonify({"success": True, **view.to_dict()})

    @app.route("/api/themes/<theme_ref>/budget")
    def get_budget(theme_ref):
        theme, config = _theme_and_config(theme_ref)
        usage = budget.usage(theme.id, config.daily_budget)
        return jsonify({"success": True, **usage.to_dict()})

    @app.route("/api/themes/<theme_ref>/budget/reset", methods=["POST"])
    def reset_budget(theme_ref):
        theme, config = _theme_and_config(theme_ref)
        budget.reset(theme.id, config.daily_budget)
        return jsonify({"success": True, "ok": True})

    @app.route("/api/themes/<theme_ref>/extractions")
    def list_extractions(theme_ref):
        theme = coordinator.resolve_theme(theme_ref)
        try:
            limit = int(request.args.get("limit", 50))
        except ValueError:
            return jsonify({"success": False, "error": "limit must be an integer"}), 400
        limit = max(1, min(limit, 200))
        docs = store.list_documents(theme.id, limit=limit)
        return jsonify({
            "success": True,
            "extractions": [
                {
                    "id": d.id,
                    "scrapeJobId": d.scrape_job_id,
                    "headline": d.headline,
                    "canonicalUrl": d.canonical_url,
                    "sourceDomain": d.source_domain,
                    "publishedAt": _iso(d.published_at),
                    "scrapedAt": _iso(d.scraped_at),
                    "extractionMethod": d.extraction_method,
                    "textLength": d.text_length,
                    "qualityScore": d.quality_score,
                }
                for d in docs
            ],
        })

    @app.errorhandler(ThemeNotFound)
    @app.errorhandler(JobNotFound)
    def not_found(error):
        return jsonify({"success": False, "error": str(error)}), 404

    @app.errorhandler(ConfigMissing)
    def config_missing(error):
        return jsonify({"success": False, "error": str(error)}), 400

    @app.errorhandler(BudgetExhausted)
    def budget_exhausted(error):
        return jsonify({
            "success": False,
            "error": str(error),
            "used": error.used,
            "limit": error.limit,
            "remaining": 0,
        }), 429

    @app.errorhandler(IngestionError)
    def ingestion_failed(error):
        logger.error(f"[ingest] {error}")
        return jsonify({"success": False, "error": str(error), "ingestionJobId": error.job_id}), 500

    @app.errorhandler(DatabaseError)
    def database_failed(error):
        logger.error(f"Database error: {error}")
        return jsonify({"success": False, "error": "Database error"}), 500

    @app.errorhandler(404)
    def endpoint_not_found(error):
        return jsonify({"success": False, "error": "Endpoint not found"}), 404

    @app.errorhandler(429)
    def rate_limit_handler(error):
        return jsonify({
            "success": False,
            "error": "Rate limit exceeded",
            "message": "Too many requests, please slow down",
            "retry_after": 60,
        }), 429

    return app
