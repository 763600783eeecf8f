from django.urls import path, include
from rest_framework.routers import SimpleRouter

from .views import CartViewSet, CheckoutView, OrderViewSet

router = SimpleRouter()
router.register(r'cart', CartViewSet, basename='cart')
router.register(r'', OrderViewSet, basename='order')

urlpatterns = [
    path('checkout/', CheckoutView.as_view(), name='checkout'),
    path('', include(router.urls)),
]
