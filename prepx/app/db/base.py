from prepx.app.db.base_class import Base

# Import models to register metadata for Base.metadata.create_all in tests
from prepx.app.models.user import User  # noqa: F401
from prepx.app.models.student import Student  # noqa: F401
from prepx.app.models.parent import Parent, ParentStudentLink  # noqa: F401
from prepx.app.models.batch import Batch, StudentBatch  # noqa: F401
from prepx.app.models.fee import Fee  # noqa: F401
from prepx.app.models.exam import Exam  # noqa: F401
from prepx.app.models.attendance import Attendance  # noqa: F401
from prepx.app.models.lead import Lead  # noqa: F401
from prepx.app.models.communication_log import CommunicationLog  # noqa: F401
from prepx.app.models.notification_settings import NotificationSettings  # noqa: F401
from prepx.app.models.org_setting import OrgSetting  # noqa: F401
