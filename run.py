import logging
import os

from school_api import create_app
from school_api.notifications.sweeper import start_notification_sweeper

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO'),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)

app = create_app()

if __name__ == '__main__':
    start_notification_sweeper(app)
    app.run(host="0.0.0.0", port=int(os.getenv('PORT', 5000)), debug=app.config['FLASK_ENV'] != 'production')
