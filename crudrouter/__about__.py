__version__ = "1.0.0"
__description__ = "crudrouter : REST CRUD routes for SqlAlchemy models on Flask"
