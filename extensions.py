"""Extension singletons shared by the app factory, models and blueprints."""
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

# Instances keep their loaded state after commit.
db = SQLAlchemy(session_options={"expire_on_commit": False})
migrate = Migrate()
login_manager = LoginManager()
# API blueprints are exempted in create_app.
csrf = CSRFProtect()
