from django import forms
from django.core.exceptions import ValidationError

from .models import SepaCollectionItem


class SepaItemStatusForm(forms.Form):
    status = forms.ChoiceField(
        required=False,
        choices=[("", "unverändert")]
        + [
            choice
            for choice in SepaCollectionItem.Status.choices
            if choice[0] != SepaCollectionItem.Status.PENDING
        ],
        widget=forms.Select(attrs={"class": "form-select form-select-sm"}),
    )
    return_reason = forms.ChoiceField(
        required=False,
        choices=[("", "---------")] + list(SepaCollectionItem.ReturnReason.choices),
        widget=forms.Select(attrs={"class": "form-select form-select-sm"}),
    )
    notes = forms.CharField(
        required=False,
        max_length=500,
        widget=forms.TextInput(attrs={"class": "form-control form-control-sm"}),
    )

    def clean(self):
        cleaned_data = super().clean()
        status = cleaned_data.get("status")
        if cleaned_data.get("return_reason") and status != SepaCollectionItem.Status.RETURNED:
            raise ValidationError("Ein Rückgabegrund ist nur bei Rücklastschriften zulässig.")
        return cleaned_data


class BillingRunDecisionForm(forms.Form):
    comment = forms.CharField(
        required=False,
        widget=forms.Textarea(attrs={"class": "form-control", "rows": 2}),
    )


class BillingRunRollbackForm(forms.Form):
    reason = forms.CharField(
        widget=forms.Textarea(attrs={"class": "form-control", "rows": 2}),
        error_messages={"required": "Bitte eine Begründung für den Rollback angeben."},
    )

    def clean_reason(self):
        reason = (self.cleaned_data.get("reason") or "").strip()
        if not reason:
            raise ValidationError("Bitte eine Begründung für den Rollback angeben.")
        return reason
