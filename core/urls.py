from django.urls import path

from . import views

urlpatterns = [
    path('', views.root_redirect, name='root'),
    path('admin/', views.admin_dashboard, name='admin_dashboard'),
    path('admin/users/<int:user_id>/', views.admin_user_detail, name='admin_user_details'),
    path('admin/users/<int:user_id>/report/', views.admin_user_report, name='admin_user_report'),
    path('admin/export/users.csv', views.admin_export_users_csv, name='admin_export_users_csv'),
    path('api/admin/users', views.api_admin_users, name='api_admin_users'),
]
