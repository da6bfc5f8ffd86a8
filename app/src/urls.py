"""
API Endpoint URL Constants

This module defines the URL paths used throughout the application
for accessing the dispatch resources.

These URLs are relative to the mounted sub application
(`/api/auth`, `/api/admin` or `/api/driver`).
"""

# -------------------------------
# Authentication & Tokens
# -------------------------------
URL_TOKEN = "/token"
URL_CSRF_TOKEN = "/csrf"

# -------------------------------
# Accounts
# -------------------------------
URL_ACCOUNT = "/account"

# -------------------------------
# Routes & Stops
# -------------------------------
URL_ROUTE = "/route"
URL_STOP = "/route/stop"
URL_STOP_GROUP = "/route/stop/group"
URL_STOP_ORDER = "/route/stop/order"
URL_STOP_RENUMBER = "/route/stop/renumber"
URL_STOP_STATUS = "/route/stop/status"
URL_STOP_PAYMENT = "/route/stop/payment"
URL_STOP_IMAGE = "/route/stop/image"
URL_STOP_IMAGE_FILE = "/route/stop/image/file"
URL_STOP_NOTE = "/route/stop/note"
URL_STOP_RETURN = "/route/stop/return"

# -------------------------------
# Customers
# -------------------------------
URL_CUSTOMER = "/customer"
URL_CUSTOMER_DUPLICATE = "/customer/duplicate"
URL_CUSTOMER_MERGE = "/customer/merge"
URL_CUSTOMER_DOCUMENT = "/customer/document"
URL_CUSTOMER_DOCUMENT_FILE = "/customer/document/file"

# -------------------------------
# Products
# -------------------------------
URL_PRODUCT = "/product"
URL_PRODUCT_BATCH = "/product/batch"
URL_PRODUCT_SEARCH = "/product/search"

# -------------------------------
# Safety & Documents
# -------------------------------
URL_SAFETY_DECLARATION = "/safety/declaration"
URL_SYSTEM_DOCUMENT = "/system/document"
URL_SYSTEM_DOCUMENT_PENDING = "/system/document/pending"
URL_SYSTEM_DOCUMENT_FILE = "/system/document/file"
URL_DOCUMENT_ACKNOWLEDGMENT = "/system/document/acknowledgment"

# -------------------------------
# Vehicles
# -------------------------------
URL_VEHICLE = "/vehicle"
URL_VEHICLE_ASSIGNMENT = "/vehicle/assignment"

# -------------------------------
# Tracking
# -------------------------------
URL_LOCATION = "/location"
URL_ATTENDANCE_STATUS = "/attendance/status"

# -------------------------------
# Monitoring
# -------------------------------
URL_METRICS = "/metrics"
URL_KPI = "/kpi"
