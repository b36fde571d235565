import logging

from django.http import JsonResponse
from django.views.decorators.http import require_GET

from .engine import get_service
from .forms import ScoreRequestForm

logger = logging.getLogger(__name__)


@require_GET
def score_view(request):
    """
    JSON endpoint: reliability score for one app.

    GET parameters: name (required), category, tagline, developer,
    app_store_url.

    Returns the report (200), a not-found payload (404) or the form errors
    (400).
    """
    form = ScoreRequestForm(request.GET)
    if not form.is_valid():
        return JsonResponse({"error": "Invalid form data.", "fields": form.errors.get_json_data()}, status=400)

    name = form.cleaned_data["name"]
    result = get_service().resolve_and_score(name, **form.score_kwargs())

    if result is None:
        return JsonResponse({"error": "Scoring was cancelled."}, status=503)
    if not result:
        logger.info(f"Score request for '{name}': {result.reason}")
        return JsonResponse(result.to_dict(), status=404)
    return JsonResponse(result.to_dict())
