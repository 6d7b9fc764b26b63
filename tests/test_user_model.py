from prepx.app.models.lead import Lead
from prepx.app.models.user import ADMIN_ROLES, User


def test_user_model_has_columns():
    column_names = [column.name for column in User.__table__.columns]
    expected = {"id", "email", "full_name", "hashed_password", "role", "is_active", "created_at", "updated_at"}
    assert expected.issubset(set(column_names))


def test_admin_roles():
    assert ADMIN_ROLES == {"super_admin", "management_admin"}
    assert User(email="a@example.com", role="management_admin").is_admin
    assert not User(email="b@example.com", role="teacher").is_admin


def test_counselor_name_prefers_full_name():
    lead = Lead(student_name="Asha", phone_number="9000000001")
    assert lead.counselor_name is None
    lead.counselor = User(email="c@example.com")
    assert lead.counselor_name == "c@example.com"
    lead.counselor = User(email="c@example.com", full_name="Counselor Priya")
    assert lead.counselor_name == "Counselor Priya"
