from rest_framework import serializers
from .models import User


class UserProfileSerializer(serializers.ModelSerializer):
    shop_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'email', 'phone_number', 'full_name', 'role', 'shop_name']

    def get_shop_name(self, obj):
        profile = getattr(obj, 'vendor_profile', None) if obj.is_vendor else None
        return profile.shop_name if profile else None
