#!/usr/bin/env python3
"""
Garden Exchange Backend Startup Script
This script starts the FastAPI server with all services.
"""

import uvicorn
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("Starting Garden Exchange Backend...")
    logger.info("Available endpoints:")
    logger.info("  - Health Check: GET /health")
    logger.info("  - Offers: POST /api/offers")
    logger.info("  - Exchanges: GET /api/exchanges, GET /api/exchanges/{exchange_id}, GET /api/exchanges/pending")
    logger.info("  - Exchange Status: PATCH /api/exchanges/{exchange_id}/status")
    logger.info("  - Reviews: POST /api/exchanges/{exchange_id}/reviews")
    logger.info("  - Chat Messages: GET/POST /api/chats/{chat_id}/messages")
    logger.info("  - Notifications: GET/DELETE /api/notifications, POST /api/notifications/{id}/read, POST /api/notifications/read-all")
    logger.info("  - Contact Form: POST /api/contact")
    logger.info("  - Account Deletion: DELETE /api/account")
    logger.info("  - API Docs: http://localhost:8000/docs")
    logger.info("  - OpenAPI Schema: http://localhost:8000/openapi.json")
    logger.info("Run run_triggers.py alongside the server when using the MongoDB store.")

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
