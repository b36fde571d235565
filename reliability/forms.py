from django import forms

from .clients import AppStoreClient


class ScoreRequestForm(forms.Form):
    """Query parameters of the score endpoint."""

    name = forms.CharField(max_length=200)
    category = forms.CharField(max_length=100, required=False)
    tagline = forms.CharField(max_length=500, required=False)
    developer = forms.CharField(max_length=200, required=False)
    app_store_url = forms.URLField(required=False, assume_scheme="https")

    def clean_name(self):
        name = self.cleaned_data.get("name", "").strip()
        if len(name) < 2:
            raise forms.ValidationError("App name must be at least 2 characters.")
        return name

    def clean_app_store_url(self):
        """Accept only App Store links that carry a numeric track id."""
        url = self.cleaned_data.get("app_store_url", "").strip()
        if url and not AppStoreClient.parse_track_id(url):
            raise forms.ValidationError("Not an App Store URL (expected .../id123456789).")
        return url

    def score_kwargs(self) -> dict:
        """Cleaned data as keyword arguments for ``resolve_and_score``."""
        data = self.cleaned_data
        return {
            "category_hint": data.get("category") or None,
            "tagline_hint": data.get("tagline") or None,
            "developer_hint": data.get("developer") or None,
            "app_store_url": data.get("app_store_url") or None,
        }
