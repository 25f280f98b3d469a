#!/usr/bin/env python3
"""
Soft Delete Example - Paranoia Toolkit

Demonstrates reversible deletion for SQLAlchemy models:
- Cascading soft deletes through declared dependents
- Hiding deleted rows with the default scope
- Recursive restore limited by a recovery window
- Counter caches of live dependents
- Permanent deletion of old rows
"""

from datetime import timedelta

from sqlalchemy import Column, ForeignKey, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from paranoia_toolkit.soft_delete import (
    CascadeMode,
    CounterCache,
    Dependent,
    SoftDeleteMixin,
    SoftDeleteService,
    before_destroy,
    install_default_scope,
)

Base = declarative_base()


class ClinicalSite(Base, SoftDeleteMixin):
    """Clinical trial site that cascades to its patients."""

    __tablename__ = "clinical_sites"
    __paranoia_dependents__ = [
        Dependent("patients"),
        Dependent("notes", cascade=CascadeMode.HARD_DELETE),
    ]

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    status = Column(String, default="active")
    patients_count = Column(Integer, default=0, nullable=False)

    patients = relationship("Patient", back_populates="site")
    notes = relationship("SiteNote")

    @before_destroy
    def refuse_when_locked(self):
        return self.status != "locked"


class Patient(Base, SoftDeleteMixin):
    """Patient record counted on its site."""

    __tablename__ = "patients"
    __paranoia_dependents__ = [Dependent("visits")]
    __paranoia_counter_caches__ = [CounterCache("site", "patients_count")]

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("clinical_sites.id"))
    patient_code = Column(String, nullable=False)

    site = relationship("ClinicalSite", back_populates="patients")
    visits = relationship("PatientVisit")


class PatientVisit(Base, SoftDeleteMixin):
    __tablename__ = "patient_visits"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    visit_type = Column(String)


class SiteNote(Base):
    """Plain table without soft state."""

    __tablename__ = "site_notes"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("clinical_sites.id"))
    body = Column(String)


def demonstrate_soft_delete() -> None:
    """Show soft delete functionality."""
    print("🗑️  Soft Delete Example\n")

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    install_default_scope(Session)
    session = Session()
    service = SoftDeleteService(session)

    # 1. Create test data
    print("1️⃣ Creating Test Data:")

    site = ClinicalSite(name="City Medical Center", patients_count=2)
    site.patients = [
        Patient(
            patient_code="CMC-001",
            visits=[
                PatientVisit(visit_type="screening"),
                PatientVisit(visit_type="baseline"),
            ],
        ),
        Patient(patient_code="CMC-002"),
    ]
    site.notes = [SiteNote(body="Initiation visit done")]
    session.add(site)
    session.commit()

    patient1, patient2 = site.patients
    print(f"  ✓ Created site: {site.name}")
    print(f"  ✓ Created {session.query(Patient).count()} patients")
    print(f"  ✓ Created {session.query(PatientVisit).count()} visits\n")

    # 2. Soft delete a single record
    print("2️⃣ Soft Deleting Single Record:")

    service.destroy(patient2)
    session.commit()

    print("  ✓ Soft deleted patient CMC-002")
    print(f"  Visible patients: {len(session.query(Patient).all())}")
    print(f"  All patients: {Patient.query_all(session).count()}")
    print(f"  Site patients_count: {site.patients_count}\n")

    # 3. Cascade soft delete
    print("3️⃣ Cascade Soft Delete:")

    service.destroy(site)
    session.commit()

    print(f"  ✓ Soft deleted site: {site.name}")
    print(f"  Deleted patients: {Patient.query_deleted(session).count()}")
    print(f"  Deleted visits: {PatientVisit.query_deleted(session).count()}")
    print(f"  Site notes left: {session.query(SiteNote).count()}\n")

    # 4. Recursive restore inside a recovery window
    print("4️⃣ Restoring With a Recovery Window:")

    service.restore(site, recursive=True, recovery_window=timedelta(minutes=10))
    session.commit()

    print("  ✓ Restored site and the records deleted with it")
    print(f"  CMC-001 live: {not patient1.is_deleted}")
    print(f"  CMC-002 live: {not patient2.is_deleted}")
    print(f"  Site patients_count: {site.patients_count}\n")

    # 5. Hooks can veto an operation
    print("5️⃣ Vetoed Destroy:")

    site.status = "locked"
    session.commit()
    result = service.destroy(site)

    print(f"  Destroy result: {result}")
    print(f"  Site still live: {not site.is_deleted}\n")

    # 6. Permanent deletion
    print("6️⃣ Permanent Deletion:")

    service.really_destroy(patient2)
    session.commit()

    print("  ✓ Permanently deleted CMC-002")
    print(f"  All patients: {Patient.query_all(session).count()}")

    print("\n✅ Soft delete example completed!")


if __name__ == "__main__":
    demonstrate_soft_delete()
