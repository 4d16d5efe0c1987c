#!/usr/bin/env python3
"""
Flask API for the newsroom ingestion pipeline.
Endpoints: health, on-demand aggregation, article statistics.
"""

import logging
import os
import threading
from datetime import datetime, timezone

from dotenv import load_dotenv
from flask import Flask, current_app, jsonify, request

from cors_config import configure_cors
from newsroom.errors import SourceResolutionError, StorageError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

AGGREGATOR_KEY = "newsroom.aggregator"
MAX_CATEGORIES = 20

_aggregator_lock = threading.Lock()


def add_security_headers(response):
    """Add basic security headers"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    return response


def get_aggregator():
    """Aggregator for the current app, built from the environment on first use."""
    aggregator = current_app.extensions.get(AGGREGATOR_KEY)
    if aggregator is not None:
        return aggregator
    with _aggregator_lock:
        aggregator = current_app.extensions.get(AGGREGATOR_KEY)
        if aggregator is None:
            from newsroom.aggregation.bootstrap import build_aggregator

            aggregator = build_aggregator()
            current_app.extensions[AGGREGATOR_KEY] = aggregator
    return aggregator


def _parse_categories(data):
    """Return (categories, error message)."""
    if data is None:
        return None, None
    if not isinstance(data, dict):
        return None, 'Request body must be a JSON object'
    categories = data.get('categories')
    if categories is None:
        return None, None
    if not isinstance(categories, list) or not all(isinstance(c, str) and c.strip() for c in categories):
        return None, 'categories must be a list of non-empty strings'
    if len(categories) > MAX_CATEGORIES:
        return None, f'At most {MAX_CATEGORIES} categories per request'
    return [c.strip() for c in categories], None


def create_app(aggregator=None) -> Flask:
    app = Flask(__name__)
    app.config['JSON_SORT_KEYS'] = False
    configure_cors(app)
    app.after_request(add_security_headers)
    if aggregator is not None:
        app.extensions[AGGREGATOR_KEY] = aggregator

    @app.route('/api/health')
    def health_check():
        """API health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'version': '1.0.0'
        })

    @app.route('/api/news/aggregate', methods=['POST'])
    def aggregate_news():
        """Run one aggregation over the requested categories"""
        data = None
        if request.get_data(cache=True):
            data = request.get_json(silent=True)
            if data is None:
                return jsonify({'success': False, 'error': 'Invalid JSON body'}), 400
        categories, error = _parse_categories(data)
        if error:
            return jsonify({'success': False, 'error': error}), 400

        try:
            result = get_aggregator().aggregate(categories)
        except SourceResolutionError as e:
            logger.warning(f"Aggregation request could not be resolved: {e}")
            return jsonify({'success': False, 'error': str(e)}), 503
        except StorageError as e:
            logger.error(f"Storage unavailable during aggregation: {e}")
            return jsonify({'success': False, 'error': 'Storage temporarily unavailable', 'retry': True}), 503

        return jsonify({'success': True, 'data': result.to_dict()})

    @app.route('/api/news/statistics')
    def news_statistics():
        """Article counts overall, by category and by source"""
        try:
            stats = get_aggregator().get_statistics()
        except StorageError as e:
            logger.error(f"Storage unavailable for statistics: {e}")
            return jsonify({'success': False, 'error': 'Storage temporarily unavailable', 'retry': True}), 503
        return jsonify({'success': True, 'data': stats})

    @app.errorhandler(404)
    def not_found(error):
        """Custom 404 handler"""
        return jsonify({'success': False, 'error': 'Endpoint not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Custom 500 handler"""
        logger.error(f"Internal server error: {error}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    return app


app = create_app()

if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    port = int(os.environ.get('PORT', 5002))
    debug = os.environ.get('FLASK_ENV') == 'development'

    logger.info(f"Starting newsroom API on port {port} (debug={debug})")
    app.run(host='0.0.0.0', port=port, debug=debug, threaded=True)
