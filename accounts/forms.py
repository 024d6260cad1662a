from __future__ import annotations

from django import forms
from django.contrib.auth.forms import UserCreationForm
from django.contrib.auth.models import User

from .models import PlayerProfile


class SignupForm(UserCreationForm):
    email = forms.EmailField(required=False)
    display_name = forms.CharField(max_length=32)

    class Meta(UserCreationForm.Meta):
        model = User
        fields = ("username", "email", "display_name")

    def clean_display_name(self):
        display_name = (self.cleaned_data.get("display_name") or "").strip()
        if not display_name:
            raise forms.ValidationError("Display name is required.")
        if PlayerProfile.objects.filter(display_name__iexact=display_name).exists():
            raise forms.ValidationError("That display name is taken.")
        return display_name

    def save(self, commit=True):
        user = super().save(commit=False)
        user.email = self.cleaned_data.get("email", "")
        if commit:
            user.save()
        return user
