from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """
    ?page=2&limit=20, capped at 50 rows per page.
    """
    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 50
