from __future__ import annotations

from typing import Any, cast

from django import forms
from django.contrib.auth import get_user_model
from django.contrib.auth.forms import AuthenticationForm, UserCreationForm
from email_validator import EmailNotValidError, validate_email

from .models import AccountProfile, ensure_profile, set_member_role

UserModel = get_user_model()

SIGNUP_ROLE_CHOICES: tuple[tuple[str, str], ...] = (
    (AccountProfile.ROLE_STUDENT, "I am a student looking for housing"),
    (AccountProfile.ROLE_LANDLORD, "I am a landlord listing properties"),
)


def _add_input_css_classes(form: forms.BaseForm) -> None:
    for field in form.fields.values():
        existing = field.widget.attrs.get("class", "").strip()
        merged = f"{existing} form-input".strip()
        field.widget.attrs["class"] = merged


class SignUpForm(UserCreationForm):
    email = forms.EmailField(required=True, max_length=254)
    full_name = forms.CharField(max_length=120, required=False)
    role = forms.ChoiceField(choices=SIGNUP_ROLE_CHOICES, initial=AccountProfile.ROLE_STUDENT)

    class Meta:
        # Cast keeps Pyright strict mode happy with dynamic get_user_model typing.
        model = cast(Any, UserModel)
        fields = ("username", "email", "password1", "password2")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        _add_input_css_classes(self)
        self.fields["username"].widget.attrs.setdefault("autocomplete", "username")
        self.fields["email"].widget.attrs.setdefault("autocomplete", "email")
        self.fields["full_name"].widget.attrs.setdefault("autocomplete", "name")
        self.fields["password1"].widget.attrs.setdefault("autocomplete", "new-password")
        self.fields["password2"].widget.attrs.setdefault("autocomplete", "new-password")

    def clean_email(self) -> str:
        submitted_email = self.cleaned_data["email"].strip()
        try:
            normalized = validate_email(submitted_email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise forms.ValidationError(str(exc)) from exc

        email = normalized.lower()
        if UserModel.objects.filter(email__iexact=email).exists():
            raise forms.ValidationError("An account with this email already exists.")
        return email

    def clean_username(self) -> str:
        username = self.cleaned_data["username"].strip()
        if UserModel.objects.filter(username__iexact=username).exists():
            raise forms.ValidationError("An account with this username already exists.")
        return username

    def save(self, commit: bool = True):  # type: ignore[override]
        user = super().save(commit=False)
        user.email = self.cleaned_data["email"].strip().lower()
        if commit:
            user.save()
            profile = ensure_profile(user)
            full_name = " ".join(str(self.cleaned_data.get("full_name") or "").split())
            if full_name and profile.full_name != full_name:
                profile.full_name = full_name
                profile.save(update_fields=["full_name", "updated_at"])
            set_member_role(user, self.cleaned_data.get("role"))
        return user


class LoginForm(AuthenticationForm):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        _add_input_css_classes(self)
        self.fields["username"].widget.attrs.setdefault("autocomplete", "username")
        self.fields["password"].widget.attrs.setdefault("autocomplete", "current-password")
