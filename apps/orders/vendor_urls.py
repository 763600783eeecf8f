from django.urls import path, include
from rest_framework.routers import SimpleRouter

from .views import VendorOrderViewSet

router = SimpleRouter()
router.register(r'', VendorOrderViewSet, basename='vendor-order')

urlpatterns = [
    path('', include(router.urls)),
]
