"""
BillFree Loyalty entry point.
"""
import os
import sys
import logging

from billfree_loyalty import create_app

logger = logging.getLogger('billfree_loyalty.run')

config_name = os.getenv('FLASK_ENV', 'production')

try:
    app = create_app(config_name)
    logger.info(f"App created (config={config_name}, routes={len(list(app.url_map.iter_rules()))}, "
                f"DATABASE_URL {'set' if os.getenv('DATABASE_URL') else 'NOT SET'})")
except Exception:
    logger.exception("FATAL ERROR during app creation")
    sys.exit(1)

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=os.getenv('FLASK_ENV') == 'development'
    )
