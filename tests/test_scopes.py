"""
Tests for query scopes and the opt-in default scope.
"""

import pytest
from sqlalchemy import Column, ForeignKey, Integer, String, select
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from paranoia_toolkit.soft_delete import (
    MarkerPolicy,
    ParanoiaError,
    RecordNotFound,
    SoftDeleteMixin,
    SoftDeleteService,
    choices_including_current,
    deleted_scope,
    find_deleted,
    install_default_scope,
    live,
    live_scope,
    only_deleted,
    remove_default_scope,
    with_deleted,
)
from paranoia_toolkit.soft_delete.scopes import scoped_classes

Base = declarative_base()


class Author(Base, SoftDeleteMixin):
    __tablename__ = "authors"

    id = Column(Integer, primary_key=True)
    name = Column(String(50))
    books = relationship("Book", back_populates="author")


class Book(Base, SoftDeleteMixin):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True)
    title = Column(String(100))
    author_id = Column(Integer, ForeignKey("authors.id"))
    author = relationship("Author", back_populates="books")


class Course(Base, SoftDeleteMixin):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True)
    title = Column(String(100))
    enrollments = relationship("Enrollment")


class Enrollment(Base, SoftDeleteMixin):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True)
    student = Column(String(50))
    course_id = Column(Integer, ForeignKey("courses.id"))


class Memo(Base, SoftDeleteMixin):
    """Paranoid model left out of the default scope."""

    __tablename__ = "memos"
    __paranoia__ = MarkerPolicy(column="deleted_at", without_default_scope=True)

    id = Column(Integer, primary_key=True)
    body = Column(String(200))


class Genre(Base):
    __tablename__ = "genres"

    id = Column(Integer, primary_key=True)
    name = Column(String(50))


@pytest.fixture
def db_session(engine):
    """Create an in-memory SQLite database session for testing."""
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    remove_default_scope(session)
    session.close()


@pytest.fixture
def service(db_session):
    return SoftDeleteService(db_session)


@pytest.fixture
def library(db_session, service):
    """One author with a live and a deleted book."""
    author = Author(name="Ursula")
    kept = Book(title="The Dispossessed", author=author)
    dropped = Book(title="Early Draft", author=author)
    db_session.add_all([author, kept, dropped])
    db_session.commit()
    service.destroy(dropped)
    return author, kept, dropped


class TestExplicitScopes:
    """Test scopes built on request."""

    def test_counts(self, db_session, library):
        assert Book.query_active(db_session).count() == 1
        assert Book.query_deleted(db_session).count() == 1
        assert Book.query_all(db_session).count() == 2

    def test_module_level_queries(self, db_session, library):
        author, kept, dropped = library

        assert live(db_session, Book).all() == [kept]
        assert only_deleted(db_session, Book).all() == [dropped]
        assert set(with_deleted(db_session, Book).all()) == {kept, dropped}

    def test_predicates_in_select(self, db_session, library):
        author, kept, dropped = library

        assert db_session.scalars(select(Book).where(Book.live_scope())).all() == [
            kept
        ]
        assert db_session.scalars(
            select(Book).where(deleted_scope(Book))
        ).all() == [dropped]

    def test_non_paranoid_model_rejected(self):
        with pytest.raises(ParanoiaError):
            live_scope(Genre)


class TestDefaultScope:
    """Test the ambient live scope."""

    def test_hides_deleted_rows(self, db_session, library):
        author, kept, dropped = library
        install_default_scope(db_session)

        assert db_session.query(Book).all() == [kept]
        assert db_session.scalars(select(Book)).all() == [kept]

    def test_with_deleted_option(self, db_session, library):
        install_default_scope(db_session)

        books = db_session.query(Book).execution_options(with_deleted=True).all()

        assert len(books) == 2

    def test_explicit_scopes_unaffected(self, db_session, library):
        author, kept, dropped = library
        install_default_scope(db_session)

        assert only_deleted(db_session, Book).all() == [dropped]
        assert len(with_deleted(db_session, Book).all()) == 2

    def test_lazy_load_filtered(self, db_session, library):
        author, kept, dropped = library
        install_default_scope(db_session)
        db_session.expire(author, ["books"])

        assert author.books == [kept]

    def test_join_filtered(self, db_session, service):
        course = Course(title="Algebra")
        bob = Enrollment(student="bob")
        course.enrollments = [Enrollment(student="ann"), bob]
        db_session.add(course)
        db_session.commit()
        service.destroy(bob)
        install_default_scope(db_session)

        stmt = select(Course).join(Course.enrollments).where(
            Enrollment.student == "bob"
        )

        assert db_session.scalars(stmt).all() == []

    def test_deleted_record_still_refreshes(self, db_session, library):
        author, kept, dropped = library
        install_default_scope(db_session)
        db_session.expire(dropped)

        assert dropped.title == "Early Draft"

    def test_model_opted_out(self, db_session, service):
        memo = Memo(body="Call back")
        db_session.add(memo)
        db_session.commit()
        service.destroy(memo)
        install_default_scope(db_session)

        assert db_session.query(Memo).all() == [memo]
        assert Memo not in scoped_classes()
        assert Book in scoped_classes()

    def test_remove_default_scope(self, db_session, library):
        install_default_scope(db_session)
        install_default_scope(db_session)
        remove_default_scope(db_session)

        assert len(db_session.query(Book).all()) == 2

    def test_installed_on_sessionmaker(self, engine, library):
        Session = sessionmaker(bind=engine)
        install_default_scope(Session)
        try:
            with Session() as session:
                titles = [book.title for book in session.query(Book).all()]
        finally:
            remove_default_scope(Session)

        assert titles == ["The Dispossessed"]


class TestFindDeleted:
    """Test lookups of deleted records by primary key."""

    def test_finds_deleted_record(self, db_session, library):
        author, kept, dropped = library

        assert find_deleted(db_session, Book, dropped.id) is dropped

    def test_live_record_not_found(self, db_session, library):
        author, kept, dropped = library

        with pytest.raises(RecordNotFound) as exc_info:
            find_deleted(db_session, Book, kept.id)

        assert exc_info.value.entity_type == "Book"
        assert exc_info.value.scope == "deleted"

    def test_wrong_key_shape(self, db_session, library):
        with pytest.raises(ValueError):
            find_deleted(db_session, Book, (1, 2))


class TestChoicesIncludingCurrent:
    """Test association choices that keep a deleted current value."""

    def test_deleted_current_value_first(self, db_session, service, library):
        author, kept, dropped = library
        other = Author(name="Iain")
        db_session.add(other)
        db_session.commit()
        service.destroy(author)

        choices = choices_including_current(db_session, kept, "author")

        assert choices == [author, other]

    def test_live_current_value(self, db_session, library):
        author, kept, dropped = library

        assert choices_including_current(db_session, kept, "author") == [author]

    def test_unset_association(self, db_session, library):
        author, kept, dropped = library
        orphan = Book(title="Anonymous")
        db_session.add(orphan)
        db_session.commit()

        assert choices_including_current(db_session, orphan, "author") == [author]

    def test_unknown_relationship(self, db_session, library):
        author, kept, dropped = library

        with pytest.raises(ParanoiaError):
            choices_including_current(db_session, kept, "publisher")
