#!/usr/bin/env python3
"""newsharvest web API: ingestion trigger, job status polling, budget."""

import logging
import os

from newsharvest.api.web import create_app
from newsharvest.bootstrap import configure_logging
from newsharvest.config import load_settings

logger = logging.getLogger(__name__)

settings = load_settings()
configure_logging(settings)
app = create_app(settings=settings)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5002))
    debug = os.environ.get('FLASK_ENV') == 'development'

    logger.info(f"Starting newsharvest API on port {port} (store={settings.store_backend})")
    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug,
        threaded=True
    )
