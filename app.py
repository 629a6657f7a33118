"""
Provides an application factory that constructs and configures the
Flask instance serving the Jellyfin Analytics REST API.
"""

from typing import Optional, Dict
from datetime import datetime, timezone
import logging
import os
import time

try:
    from flask import Flask, Response, jsonify, request
except Exception as exc:
    raise RuntimeError(
        "Flask is required to run the analytics API. "
        "Install with: pip install Flask"
    ) from exc

logger = logging.getLogger(__name__)

DEV_ENCRYPTION_KEY = "default-key-change-in-production"


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def create_app(test_config: Optional[Dict] = None) -> "Flask":
    """
    Create and configure the analytics Flask application.
    """
    app = Flask(__name__)

    app.config.setdefault("DEBUG", False)
    app.config.setdefault("PORT", 3000)
    app.config.setdefault("ENVIRONMENT", os.getenv("ENVIRONMENT", "development"))
    app.config.setdefault(
        "DATABASE_URL",
        os.getenv("DATABASE_URL", "sqlite:///jellyfin_analytics.db")
    )
    app.config.setdefault(
        "DATA_DATABASE_URL",
        os.getenv("DATA_DATABASE_URL", "sqlite:///jellyfin_analytics_data.db")
    )
    app.config.setdefault("ENCRYPTION_KEY", os.getenv("ENCRYPTION_KEY"))
    app.config.setdefault("JELLYFIN_URL", os.getenv("JELLYFIN_URL"))
    app.config.setdefault("JELLYFIN_API_KEY", os.getenv("JELLYFIN_API_KEY"))
    app.config.setdefault("SEED_SAMPLE_DATA", _truthy(os.getenv("SEED_SAMPLE_DATA")))

    if test_config:
        app.config.update(test_config)
        if app.config.get("DEBUG", False):
            if "DATABASE_URL" not in test_config:
                app.config["DATABASE_URL"] = "sqlite:///:memory:"
            if "DATA_DATABASE_URL" not in test_config:
                app.config["DATA_DATABASE_URL"] = "sqlite:///:memory:"

    if not app.config.get("ENCRYPTION_KEY"):
        logger.warning(
            "ENCRYPTION_KEY is not set, using the development key for settings"
        )
        app.config["ENCRYPTION_KEY"] = DEV_ENCRYPTION_KEY

    from services.settings_store import SettingsService, SettingsError
    svc = SettingsService(
        database_url=app.config["DATABASE_URL"],
        encryption_key=app.config["ENCRYPTION_KEY"],
    )
    svc.initialize_settings()

    from services.repository import Repository
    repo = Repository(
        database_url=app.config["DATA_DATABASE_URL"]
    )

    if app.config.get("SEED_SAMPLE_DATA"):
        from services.seed import seed_sample_data
        seed_sample_data(repo)

    from services.jellyfin import create_client, check_connection
    jf = create_client(
        svc,
        base_url=app.config.get("JELLYFIN_URL"),
        api_key=app.config.get("JELLYFIN_API_KEY"),
    )

    from services.sync_service import SyncService
    sync = SyncService(
        jellyfin_client=jf,
        repository=repo
    )

    from services.analytics import AnalyticsService
    analytics = AnalyticsService(
        repository=repo,
        jellyfin_client=jf,
        sync_service=sync,
    )

    app.extensions["jellyfin_analytics"] = {
        "settings": svc,
        "repository": repo,
        "jellyfin": jf,
        "sync": sync,
        "analytics": analytics,
    }

    started_at = time.monotonic()

    import atexit

    def cleanup():
        """
        Cleanup function called when app shuts down.
        """
        for handle in (svc, repo):
            try:
                handle.dispose()
            except Exception:
                logger.warning("Failed to dispose %s", type(handle).__name__)

    atexit.register(cleanup)

    def _error(message: str, status: int) -> Response:
        return jsonify({"error": message}), status

    @app.errorhandler(404)
    def _not_found(_exc) -> Response:
        return _error("Not found", 404)

    @app.get("/health")
    def health() -> Response:
        return jsonify({
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - started_at, 3),
            "environment": app.config["ENVIRONMENT"],
        }), 200

    @app.get("/api/dashboard/overview")
    def api_dashboard_overview() -> Response:
        """
        Sync from Jellyfin, then return the dashboard summary.
        """
        try:
            return jsonify(analytics.get_dashboard_overview()), 200
        except Exception:
            logger.exception("Error fetching dashboard overview")
            return _error("Failed to fetch dashboard overview", 500)

    @app.get("/api/users/stats")
    def api_user_stats() -> Response:
        try:
            return jsonify(analytics.get_user_stats()), 200
        except Exception:
            logger.exception("Error fetching user stats")
            return _error("Failed to fetch user statistics", 500)

    @app.get("/api/content/stats")
    def api_content_stats() -> Response:
        try:
            return jsonify(analytics.get_content_stats()), 200
        except Exception:
            logger.exception("Error fetching content stats")
            return _error("Failed to fetch content statistics", 500)

    @app.get("/api/activities/timeline")
    def api_activity_timeline() -> Response:
        """
        Daily activity counts for the last ?days=N days (default 7).
        """
        days = request.args.get("days", 7, type=int)
        try:
            return jsonify(analytics.get_activity_timeline(days)), 200
        except Exception:
            logger.exception("Error fetching activity timeline")
            return _error("Failed to fetch activity timeline", 500)

    @app.get("/api/sessions/active")
    def api_active_sessions() -> Response:
        try:
            return jsonify(analytics.get_active_sessions()), 200
        except Exception:
            logger.exception("Error fetching active sessions")
            return _error("Failed to fetch active sessions", 500)

    @app.post("/api/sync")
    def api_sync() -> Response:
        """
        Trigger a manual sync operation.
        """
        try:
            sync.sync_from_source()
        except Exception:
            logger.exception("Error syncing data")
            return _error("Failed to sync data from Jellyfin", 500)
        return jsonify({"message": "Data sync completed successfully"}), 200

    @app.get("/api/sync/latest")
    def api_sync_latest() -> Response:
        """
        Most recent sync task log, or null if none ran yet.
        """
        try:
            return jsonify(repo.get_latest_sync_task()), 200
        except Exception:
            logger.exception("Error fetching latest sync task")
            return _error("Failed to fetch sync status", 500)

    @app.get("/api/settings")
    def api_get_settings() -> Response:
        try:
            return jsonify(svc.get_all_settings()), 200
        except Exception:
            logger.exception("Error fetching settings")
            return _error("Failed to fetch settings", 500)

    @app.get("/api/settings/<string:category>")
    def api_get_settings_category(category: str) -> Response:
        try:
            return jsonify(svc.get_settings_by_category(category)), 200
        except Exception:
            logger.exception("Error fetching settings by category")
            return _error("Failed to fetch settings", 500)

    @app.put("/api/settings/<string:key>")
    def api_update_setting(key: str) -> Response:
        """
        Update one setting. Jellyfin keys make the client reload.
        """
        payload = request.get_json(silent=True) or {}
        value = payload.get("value")

        if not isinstance(value, str):
            return _error("Setting value must be a string", 400)

        try:
            svc.set_setting(key, value)
        except SettingsError as exc:
            logger.warning("Rejected setting update for %s: %s", key, exc)
            return _error(str(exc), 400)
        except Exception as exc:
            logger.exception("Error updating setting %s", key)
            return _error(str(exc) or "Failed to update setting", 400)

        if key.startswith("jellyfin."):
            jf.reload()

        return jsonify({"message": "Setting updated successfully"}), 200

    @app.post("/api/settings/validate")
    def api_validate_settings() -> Response:
        try:
            return jsonify(svc.validate_settings()), 200
        except Exception:
            logger.exception("Error validating settings")
            return _error("Failed to validate settings", 500)

    @app.post("/api/settings/test-jellyfin")
    def api_test_jellyfin() -> Response:
        """
        Test Jellyfin connectivity with provided credentials.
        """
        payload = request.get_json(silent=True) or {}
        url = payload.get("url")
        api_key = payload.get("apiKey")
        if not isinstance(url, str):
            url = ""
        if not isinstance(api_key, str):
            api_key = ""

        result = check_connection(url.strip(), api_key.strip())
        return jsonify(result.to_dict()), (200 if result.success else 400)

    return app


if __name__ == "__main__":
    application = create_app()
    application.run(
        host="127.0.0.1",
        port=application.config["PORT"]
    )
