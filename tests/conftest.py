import pytest
from flask import Flask

from crudrouter import CRUDRouter, DB


class User(DB.Model):
    __tablename__ = "users"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String(64), nullable=False)
    email = DB.Column(DB.String(128), unique=True)
    password = DB.Column(DB.String(128))
    profile = DB.relationship("Profile", back_populates="user", uselist=False)
    posts = DB.relationship("Post", back_populates="author")


class Profile(DB.Model):
    __tablename__ = "profiles"
    id = DB.Column(DB.Integer, primary_key=True)
    bio = DB.Column(DB.String(256))
    user_id = DB.Column(DB.Integer, DB.ForeignKey("users.id"), nullable=False)
    user = DB.relationship("User", back_populates="profile")


class Post(DB.Model):
    __tablename__ = "posts"
    id = DB.Column(DB.Integer, primary_key=True)
    title = DB.Column(DB.String(128), nullable=False)
    body = DB.Column(DB.Text)
    published = DB.Column(DB.Boolean, default=False)
    author_id = DB.Column(DB.Integer, DB.ForeignKey("users.id"))
    author = DB.relationship("User", back_populates="posts")


class Category(DB.Model):
    __tablename__ = "categories"
    id = DB.Column(DB.Integer, primary_key=True)
    name = DB.Column(DB.String(64), nullable=False)
    parent_id = DB.Column(DB.Integer, DB.ForeignKey("categories.id", ondelete="CASCADE"))
    parent = DB.relationship("Category", remote_side=[id], back_populates="children")
    children = DB.relationship("Category", back_populates="parent")


@pytest.fixture
def app():
    app = Flask("crudrouter_test")
    app.config.update(SQLALCHEMY_DATABASE_URI="sqlite://", TESTING=True)
    DB.init_app(app)
    with app.app_context():
        DB.create_all()
        yield app
        DB.session.remove()
        DB.drop_all()


@pytest.fixture
def router(app):
    return CRUDRouter(app, is_dev=True, models=[User, Profile, Post, Category])


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(app):
    """5 users, the first one with 2 posts"""
    result = [User(name=f"user{i}", email=f"user{i}@example.com", password="secret") for i in range(5)]
    DB.session.add_all(result)
    DB.session.flush()
    DB.session.add_all([Post(title="first", author_id=result[0].id), Post(title="second", author_id=result[0].id)])
    DB.session.commit()
    return result


@pytest.fixture
def categories(app):
    """root (1) with children 2 and 3"""
    root = Category(name="root")
    DB.session.add(root)
    DB.session.flush()
    DB.session.add_all([Category(name="a", parent_id=root.id), Category(name="b", parent_id=root.id)])
    DB.session.commit()
    return root
