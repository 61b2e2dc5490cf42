# routes/health.py
from flask import Blueprint, jsonify
import logging
import os
import time

import psycopg

import config
import db_utils as db_tools

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health_check():
    """
    Database connectivity, pool statistics, queue backlog and whether the
    Spotify / LLM credentials are configured
    """
    health_status = {
        'status': 'unknown',
        'database': 'unknown',
        'pool_stats': db_tools.get_pool_stats(),
        'spotify_configured': bool(config.SPOTIFY_CLIENT_ID and config.SPOTIFY_CLIENT_SECRET),
        'llm_configured': bool(os.environ.get('OPENAI_API_KEY')),
        'timestamp': time.time()
    }

    try:
        row = db_tools.execute_query("""
            SELECT current_timestamp AS now,
                   (SELECT COUNT(*) FROM match_queue WHERE status = 'pending') AS pending_matches
        """, fetch_one=True)
    except (psycopg.Error, RuntimeError) as e:
        logger.error(f"Health check failed: {e}")
        health_status['status'] = 'unhealthy'
        health_status['database'] = f'error: {e}'
        return jsonify(health_status), 503

    health_status['status'] = 'healthy'
    health_status['database'] = 'connected'
    health_status['db_time'] = str(row['now'])
    health_status['pending_matches'] = row['pending_matches']
    return jsonify(health_status), 200
