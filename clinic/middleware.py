class RequestClientMiddleware:
    """Attach the caller's address and user agent to the request.

    Stock ledger rows record where a movement was entered from; behind the
    reverse proxy the client address arrives in ``X-Forwarded-For``.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
        if forwarded:
            request.client_ip = forwarded.split(',')[0].strip()
        else:
            request.client_ip = request.META.get('REMOTE_ADDR', '') or ''
        request.client_agent = (request.META.get('HTTP_USER_AGENT', '') or '')[:512]
        return self.get_response(request)
