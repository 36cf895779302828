import config
from api import create_app

config.setup_logging()

# Passenger needs 'application'
application = create_app()
