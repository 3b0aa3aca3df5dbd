"""Campus clinic application.

Models, services, serializers, views and routes for students,
consultations, medicine stock, drug tracking and the offline -> online
sync.
"""
