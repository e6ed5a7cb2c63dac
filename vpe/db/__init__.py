from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

def init_db(app):
    """Initialize the database with the app"""
    database_path = app.config.get('DATABASE_PATH', 'vpe.sqlite')
    app.config.setdefault('SQLALCHEMY_DATABASE_URI', f'sqlite:///{database_path}')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    db.init_app(app)

    from vpe.db import models  # noqa: F401  register tables before create_all

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()
