from django.urls import path
from .views import serviceability, active_zipcodes, geocode

urlpatterns = [
    path('location/serviceability/', serviceability, name='location-serviceability'),
    path('location/active-zipcodes/', active_zipcodes, name='location-active-zipcodes'),
    path('location/geocode/', geocode, name='location-geocode'),
]
