from marshmallow import Schema, fields, pre_load, validates, validate, ValidationError, EXCLUDE

ROLES = ("member", "owner", "admin")


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


class LoginSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    # username or email
    username = fields.String(required=True, validate=validate.Length(min=1, error="Username or email is required"))
    password = fields.String(required=True, load_only=True,
                             validate=validate.Length(min=1, error="Password is required"))


class RefreshTokenSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.String(data_key="refreshToken", allow_none=True, load_default=None)


class UserCreateSchema(Schema):
    username = fields.String(required=True, validate=validate.Length(min=1, max=255))
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    name = fields.String(allow_none=True, load_default=None)
    role = fields.String(load_default="member", validate=validate.OneOf(ROLES))
    company_id = fields.Integer(data_key="companyId", allow_none=True, load_default=None)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data["email"] = _norm_email(data["email"])
        return data

    @validates("password")
    def validate_password(self, value, **kwargs):
        if len(value) < 6:
            raise ValidationError("Password must be at least 6 characters")


class PasswordChangeSchema(Schema):
    current_password = fields.String(data_key="currentPassword", load_only=True, allow_none=True, load_default=None)
    new_password = fields.String(data_key="newPassword", required=True, load_only=True)

    @validates("new_password")
    def validate_password(self, value, **kwargs):
        if len(value) < 6:
            raise ValidationError("Password must be at least 6 characters")


class RoleUpdateSchema(Schema):
    role = fields.String(required=True, validate=validate.OneOf(ROLES))


class UserOutSchema(Schema):
    id = fields.Integer()
    username = fields.String()
    email = fields.String()
    name = fields.String(allow_none=True)
    role = fields.String()
    company_id = fields.Integer(data_key="companyId", allow_none=True)
    is_active = fields.Boolean(data_key="isActive")
    last_login = fields.DateTime(data_key="lastLogin", allow_none=True)
