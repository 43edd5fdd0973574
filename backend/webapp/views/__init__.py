from webapp.views.auth_handlers import check_email_validation as check_email_validation
from webapp.views.auth_handlers import current_user as current_user
from webapp.views.auth_handlers import forgot_password as forgot_password
from webapp.views.auth_handlers import login as login
from webapp.views.auth_handlers import logout as logout
from webapp.views.auth_handlers import reset_password as reset_password
from webapp.views.auth_handlers import signup as signup
from webapp.views.auth_handlers import verify_email as verify_email
from webapp.views.profile_handlers import change_password as change_password
from webapp.views.profile_handlers import confirm_email_change as confirm_email_change
from webapp.views.profile_handlers import request_email_change as request_email_change
from webapp.views.profile_handlers import update_avatar as update_avatar
from webapp.views.profile_handlers import update_optional as update_optional
from webapp.views.profile_handlers import update_optional_enhanced as update_optional_enhanced
from webapp.views.profile_handlers import update_profile as update_profile
from webapp.views.templating import create_templates as create_templates
