"""
Tests for the cascade engine.

Covers soft and hard cascades for every cascade mode, recovery windows,
polymorphic owners and rollback of vetoed or failing dependents.
"""

import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from paranoia_toolkit.soft_delete import (
    CascadeMode,
    Dependent,
    SoftDeleteMixin,
    SoftDeleteService,
    before_destroy,
    before_restore,
)

T0 = datetime(2024, 3, 1, 12, 0, 0)

Base = declarative_base()

hook_calls = []


class Parent(Base, SoftDeleteMixin):
    """Owner declaring one dependent per cascade mode."""

    __tablename__ = "parents"
    __paranoia_dependents__ = [
        Dependent("children"),
        Dependent("profile"),
        Dependent("attachments"),
        Dependent("notes", cascade=CascadeMode.NULLIFY),
        Dependent("drafts", cascade=CascadeMode.DELETE),
        Dependent("revisions", cascade=CascadeMode.HARD_DESTROY),
        Dependent("logs", cascade="delete!"),
    ]

    id = Column(Integer, primary_key=True)
    name = Column(String(50))
    children = relationship("Child", back_populates="parent")
    profile = relationship("Profile", uselist=False, back_populates="parent")
    attachments = relationship("Attachment")
    notes = relationship("Note")
    drafts = relationship("Draft")
    revisions = relationship("Revision")
    logs = relationship("Log")


class Child(Base, SoftDeleteMixin):
    """Paranoid collection dependent with vetoing hooks."""

    __tablename__ = "children"

    id = Column(Integer, primary_key=True)
    name = Column(String(50))
    parent_id = Column(Integer, ForeignKey("parents.id"))
    parent = relationship("Parent", back_populates="children")

    @before_destroy
    def refuse_protected(self):
        if self.name == "explosive":
            raise RuntimeError("boom")
        return self.name != "protected"

    @before_restore
    def refuse_restore(self):
        return self.name != "stay-deleted"


class Profile(Base, SoftDeleteMixin):
    """Paranoid singular dependent."""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey("parents.id"))
    parent = relationship("Parent", back_populates="profile")


class Attachment(Base):
    """Plain dependent with no soft state."""

    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey("parents.id"))


class Note(Base):
    """Plain dependent whose key is cleared."""

    __tablename__ = "notes"

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey("parents.id"), nullable=True)


class Draft(Base, SoftDeleteMixin):
    """Paranoid dependent soft deleted without hooks."""

    __tablename__ = "drafts"

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey("parents.id"))

    @before_destroy
    def record_destroy(self):
        hook_calls.append(("draft", self.id))


class Revision(Base, SoftDeleteMixin):
    """Paranoid dependent removed for good when its owner is destroyed."""

    __tablename__ = "revisions"

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey("parents.id"))


class Log(Base):
    """Plain dependent removed in bulk."""

    __tablename__ = "logs"

    id = Column(Integer, primary_key=True)
    parent_id = Column(Integer, ForeignKey("parents.id"))


class Article(Base, SoftDeleteMixin):
    """Polymorphic owner."""

    __tablename__ = "articles"
    __paranoia_dependents__ = [
        Dependent("remarks", owner_type_column="commentable_type")
    ]

    id = Column(Integer, primary_key=True)
    remarks = relationship(
        "Remark",
        primaryjoin="and_(Article.id == foreign(Remark.commentable_id), "
        "Remark.commentable_type == 'Article')",
        viewonly=True,
    )


class Photo(Base, SoftDeleteMixin):
    """Second polymorphic owner sharing key values with Article."""

    __tablename__ = "photos"
    __paranoia_dependents__ = [
        Dependent("remarks", owner_type_column="commentable_type")
    ]

    id = Column(Integer, primary_key=True)
    remarks = relationship(
        "Remark",
        primaryjoin="and_(Photo.id == foreign(Remark.commentable_id), "
        "Remark.commentable_type == 'Photo')",
        viewonly=True,
    )


class Remark(Base, SoftDeleteMixin):
    """Dependent of either owner type."""

    __tablename__ = "remarks"

    id = Column(Integer, primary_key=True)
    commentable_id = Column(Integer)
    commentable_type = Column(String(20))


class Shop(Base, SoftDeleteMixin):
    """Polymorphic owner of a single logo."""

    __tablename__ = "shops"
    __paranoia_dependents__ = [Dependent("logo", owner_type_column="owner_type")]

    id = Column(Integer, primary_key=True)
    logo = relationship(
        "Logo",
        primaryjoin="Shop.id == foreign(Logo.owner_id)",
        uselist=False,
        viewonly=True,
    )


class Brand(Base, SoftDeleteMixin):
    """Second single-logo owner sharing key values with Shop."""

    __tablename__ = "brands"
    __paranoia_dependents__ = [Dependent("logo", owner_type_column="owner_type")]

    id = Column(Integer, primary_key=True)
    logo = relationship(
        "Logo",
        primaryjoin="Brand.id == foreign(Logo.owner_id)",
        uselist=False,
        viewonly=True,
    )


class Logo(Base, SoftDeleteMixin):
    __tablename__ = "logos"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer)
    owner_type = Column(String(20))


@pytest.fixture
def db_session(engine):
    """Create an in-memory SQLite database session for testing."""
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()


@pytest.fixture(autouse=True)
def reset_hook_calls():
    hook_calls.clear()


@pytest.fixture
def service(db_session):
    return SoftDeleteService(db_session)


@pytest.fixture
def family(db_session):
    """Parent P with collection dependents C1 and C2."""
    parent = Parent(name="P")
    parent.children = [Child(name="C1"), Child(name="C2")]
    db_session.add(parent)
    db_session.commit()
    return parent


def reload(session, cls, ident):
    """Load a row by id regardless of its deletion state."""
    return cls.query_all(session).filter(cls.id == ident).one_or_none()


@pytest.mark.cascade
class TestCollectionCascade:
    """Test destroy and restore through collection dependents."""

    def test_destroy_and_recursive_restore(self, service, family):
        """Parent and children are deleted together and restored together."""
        c1, c2 = family.children

        assert service.destroy(family) is family
        assert family.is_deleted
        assert c1.is_deleted and c2.is_deleted

        service.restore(family, recursive=True)
        assert not family.is_deleted
        assert not c1.is_deleted and not c2.is_deleted

    def test_restore_without_recursion_keeps_children_deleted(
        self, service, family
    ):
        """Only the record itself comes back."""
        c1, c2 = family.children
        service.destroy(family)

        service.restore(family)

        assert not family.is_deleted
        assert c1.is_deleted and c2.is_deleted

    def test_other_parents_children_untouched(self, db_session, service, family):
        """Destroy only reaches the owner's own dependents."""
        other = Parent(name="Q", children=[Child(name="D1")])
        db_session.add(other)
        db_session.commit()

        service.destroy(family)

        assert not other.children[0].is_deleted

    def test_already_deleted_child_keeps_its_marker(self, service, family):
        """Children deleted earlier are not stamped again."""
        c1 = family.children[0]
        service.destroy(c1)
        first_marker = c1.deleted_at

        service.destroy(family)

        assert c1.deleted_at == first_marker


@pytest.mark.cascade
class TestRecoveryWindow:
    """Test restore limited to a recovery window."""

    @pytest.fixture
    def deleted_family(self, db_session, family):
        """P deleted at T0, C1 at T0+5min, C2 at T0+11min."""
        c1, c2 = family.children
        family.deleted_at = T0
        c1.deleted_at = T0 + timedelta(minutes=5)
        c2.deleted_at = T0 + timedelta(minutes=11)
        db_session.commit()
        return family

    def test_ten_minute_window_skips_late_dependent(self, service, deleted_family):
        """A dependent deleted 11 minutes later stays deleted."""
        c1, c2 = deleted_family.children

        service.restore(
            deleted_family, recursive=True, recovery_window=timedelta(minutes=10)
        )

        assert not deleted_family.is_deleted
        assert not c1.is_deleted
        assert c2.is_deleted

    def test_window_bounds_are_inclusive(self, service, deleted_family):
        """An 11 minute window reaches the dependent at T0+11min."""
        c1, c2 = deleted_family.children

        service.restore(
            deleted_family, recursive=True, recovery_window=timedelta(minutes=11)
        )

        assert not c2.is_deleted

    def test_no_window_restores_everything(self, service, deleted_family):
        c1, c2 = deleted_family.children

        service.restore(deleted_family, recursive=True)

        assert not c1.is_deleted and not c2.is_deleted

    def test_explicit_window(self, service, deleted_family):
        """Explicit bounds apply to the record itself as well."""
        c1, c2 = deleted_family.children
        window = (T0 + timedelta(minutes=10), T0 + timedelta(minutes=12))

        service.restore(deleted_family, recursive=True, recovery_window=window)

        assert deleted_family.is_deleted
        assert c1.is_deleted
        assert not c2.is_deleted

    def test_duration_window_on_live_record(self, caplog, service, family):
        """A live owner has no deletion time, so dependents restore unlimited."""
        c1, c2 = family.children
        service.destroy(c1)
        caplog.set_level(logging.INFO, logger="paranoia_toolkit.soft_delete.services")

        service.restore(family, recursive=True, recovery_window=timedelta(minutes=10))

        assert not c1.is_deleted
        assert "restoring without a window" in caplog.text


@pytest.mark.cascade
class TestSingularCascade:
    """Test one-to-one dependents."""

    def test_profile_follows_parent(self, db_session, service):
        parent = Parent(name="P", profile=Profile())
        db_session.add(parent)
        db_session.commit()
        profile = parent.profile

        service.destroy(parent)
        assert profile.is_deleted

        service.restore(parent, recursive=True)
        assert not profile.is_deleted
        assert parent.profile is profile


@pytest.mark.cascade
class TestCascadeModes:
    """Test the non-default cascade modes."""

    def test_plain_dependents_are_hard_destroyed(self, db_session, service, family):
        """Dependents without soft state are removed."""
        attachment = Attachment(parent_id=family.id)
        db_session.add(attachment)
        db_session.commit()
        attachment_id = attachment.id

        service.destroy(family)

        assert db_session.get(Attachment, attachment_id) is None

    def test_nullify_clears_key(self, db_session, service, family):
        note = Note(parent_id=family.id)
        db_session.add(note)
        db_session.commit()

        service.destroy(family)

        assert note.parent_id is None

    def test_delete_mode_skips_hooks(self, db_session, service, family):
        """delete-mode dependents are soft deleted without hooks."""
        draft = Draft(parent_id=family.id)
        db_session.add(draft)
        db_session.commit()

        service.destroy(family)

        assert draft.is_deleted
        assert hook_calls == []

    def test_delete_mode_dependents_restored(self, db_session, service, family):
        draft = Draft(parent_id=family.id)
        db_session.add(draft)
        db_session.commit()
        service.destroy(family)

        service.restore(family, recursive=True)

        assert not draft.is_deleted

    def test_hard_modes_remove_rows(self, db_session, service, family):
        """destroy! and delete! dependents are removed after a soft destroy."""
        revision = Revision(parent_id=family.id)
        log = Log(parent_id=family.id)
        db_session.add_all([revision, log])
        db_session.commit()
        revision_id, log_id = revision.id, log.id

        service.destroy(family)

        assert family.is_deleted
        assert reload(db_session, Revision, revision_id) is None
        assert db_session.get(Log, log_id) is None


@pytest.mark.cascade
class TestHardCascade:
    """Test really_destroy through dependents."""

    def test_really_destroy_removes_deleted_children(
        self, db_session, service, family
    ):
        """Soft-deleted dependents are removed with their owner."""
        child_ids = [child.id for child in family.children]
        other = Parent(name="Q", children=[Child(name="D1")])
        db_session.add(other)
        db_session.commit()
        other_child_id = other.children[0].id

        service.destroy(family)
        service.really_destroy(family)

        for child_id in child_ids:
            assert reload(db_session, Child, child_id) is None
        assert reload(db_session, Child, other_child_id) is not None

    def test_really_destroy_live_family(self, db_session, service, family):
        parent_id = family.id
        draft = Draft(parent_id=parent_id)
        db_session.add(draft)
        db_session.commit()
        draft_id = draft.id

        service.really_destroy(family)

        assert reload(db_session, Parent, parent_id) is None
        assert reload(db_session, Draft, draft_id) is None
        assert Child.query_all(db_session).count() == 0


@pytest.mark.cascade
class TestPolymorphicOwners:
    """Test owners sharing key values with different discriminators."""

    @pytest.fixture
    def owners(self, db_session):
        article, photo = Article(id=1), Photo(id=1)
        on_article = Remark(commentable_id=1, commentable_type="Article")
        on_photo = Remark(commentable_id=1, commentable_type="Photo")
        db_session.add_all([article, photo, on_article, on_photo])
        db_session.commit()
        return article, photo, on_article, on_photo

    def test_destroy_touches_own_dependents_only(self, service, owners):
        article, photo, on_article, on_photo = owners

        service.destroy(article)

        assert on_article.is_deleted
        assert not on_photo.is_deleted

    def test_restore_touches_own_dependents_only(self, service, owners):
        article, photo, on_article, on_photo = owners
        service.destroy(article)
        service.destroy(photo)

        service.restore(article, recursive=True)

        assert not on_article.is_deleted
        assert on_photo.is_deleted

    def test_singular_restore_ignores_other_owner_type(self, db_session, service):
        """The relationship alone matches both logos; the owner type decides."""
        shop, brand = Shop(id=1), Brand(id=1)
        brand_logo = Logo(owner_id=1, owner_type="Brand")
        shop_logo = Logo(owner_id=1, owner_type="Shop")
        db_session.add_all([shop, brand, brand_logo, shop_logo])
        db_session.commit()
        service.destroy(brand)
        service.destroy(shop)
        assert brand_logo.is_deleted and shop_logo.is_deleted

        service.restore(shop, recursive=True)

        assert not shop.is_deleted
        assert not shop_logo.is_deleted
        assert brand_logo.is_deleted


@pytest.mark.cascade
class TestCascadeRollback:
    """Test that failures in dependents undo the whole operation."""

    def test_dependent_veto_aborts_destroy(self, db_session, service):
        parent = Parent(name="P", children=[Child(name="C1"), Child(name="protected")])
        db_session.add(parent)
        db_session.commit()
        c1 = parent.children[0]

        assert service.destroy(parent) is False

        assert not parent.is_deleted
        assert not c1.is_deleted

    def test_dependent_error_rolls_back_parent(self, db_session, service):
        parent = Parent(name="P", children=[Child(name="C1"), Child(name="explosive")])
        db_session.add(parent)
        db_session.commit()
        c1 = parent.children[0]

        with pytest.raises(RuntimeError):
            service.destroy(parent)

        assert not parent.is_deleted
        assert not c1.is_deleted

    def test_dependent_veto_aborts_restore(self, db_session, service):
        """A vetoed dependent undoes the restore of its owner and siblings."""
        parent = Parent(
            name="P", children=[Child(name="C1"), Child(name="stay-deleted")]
        )
        db_session.add(parent)
        db_session.commit()
        c1, stubborn = parent.children
        service.destroy(parent)

        assert service.restore(parent, recursive=True) is False

        assert parent.is_deleted
        assert c1.is_deleted
        assert stubborn.is_deleted
