import os
import re
import secrets
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import uuid4
from urllib.parse import quote, urljoin

import bcrypt
import requests
import resend
from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    decode_token,
    get_jwt_identity,
    jwt_required,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_pymongo import PyMongo
from jwt.exceptions import PyJWTError
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.utils import secure_filename

from backend import pricing
from backend.helpers import (
    format_timestamp,
    is_valid_id,
    normalize_category_name,
    normalize_email,
    normalize_object_id_list,
    normalize_object_id_value,
    normalize_text_list,
    parse_int,
    parse_json_list,
    safe_float,
    safe_positive_int,
)

load_dotenv()

_resend_api_key = (os.getenv("RESEND_API_KEY") or "").strip()
if _resend_api_key:
    resend.api_key = _resend_api_key

DEFAULT_ADMIN_KEY = "NLRM1103"
DEFAULT_MONGO_URI = "mongodb://localhost:27017/craftcircle"


def create_app(test_config: Optional[Dict] = None, db=None) -> Flask:
    """Create and configure the Flask application.

    ``test_config`` is applied on top of the environment-derived settings and
    ``db`` replaces the Flask-PyMongo database handle when given.
    """
    app = Flask(__name__)

    # Honor proxy headers so generated upload links keep the public HTTPS origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=1)
    app.config["MONGO_URI"] = os.getenv("MONGO_URI", DEFAULT_MONGO_URI)
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.path.join(app.root_path, "uploads")
    app.config["PRODUCT_ALLOWED_EXTENSIONS"] = {"png", "jpg", "jpeg", "gif", "webp"}
    app.config["STORAGE_PUBLIC_URL"] = (os.getenv("STORAGE_PUBLIC_URL") or "").strip()
    app.config["ADMIN_KEY"] = os.getenv("ADMIN_KEY", DEFAULT_ADMIN_KEY) or DEFAULT_ADMIN_KEY
    app.config["VENDOR_WELCOME_SENDER"] = (
        os.getenv("VENDOR_WELCOME_SENDER", "vendors@craftcircle.shop")
        or "vendors@craftcircle.shop"
    )
    app.config["RESEND_API_KEY"] = _resend_api_key

    app.config["SHIPPING_PROVIDER"] = (os.getenv("SHIPPING_PROVIDER") or "").strip()
    app.config["SHIPPING_HARDCODE"] = (
        os.getenv("SHIPPING_HARDCODE") or os.getenv("SHIPPING_HARDCODED") or ""
    ).strip()
    app.config["SHIPPING_HARDCODE_SALT"] = os.getenv("SHIPPING_HARDCODE_SALT", "")
    app.config["SHIPPING_CURRENCY"] = os.getenv("SHIPPING_CURRENCY", "INR") or "INR"
    app.config["EASYSHIP_API_KEY"] = (os.getenv("EASYSHIP_API_KEY") or "").strip()
    app.config["EASYSHIP_BASE_URL"] = (os.getenv("EASYSHIP_BASE_URL") or "").strip()
    app.config["EASYSHIP_PICKUP_PINCODE"] = (
        os.getenv("EASYSHIP_PICKUP_PINCODE")
        or os.getenv("SHIPPING_PICKUP_PINCODE")
        or "110064"
    )
    app.config["EASYSHIP_PICKUP_COUNTRY"] = (
        os.getenv("EASYSHIP_PICKUP_COUNTRY")
        or os.getenv("SHIPPING_PICKUP_COUNTRY")
        or "IN"
    )

    if test_config:
        app.config.update(test_config)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:8080",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
        os.getenv("PUBLIC_FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    jwt = JWTManager(app)

    @jwt.unauthorized_loader
    def handle_missing_token(reason: str):
        return jsonify({"message": "Authentication required", "detail": reason}), 401

    @jwt.invalid_token_loader
    def handle_invalid_token(reason: str):
        return (
            jsonify({"message": "Invalid authentication token", "detail": reason}),
            401,
        )

    @jwt.expired_token_loader
    def handle_expired_token(_jwt_header, _jwt_payload):
        return jsonify({"message": "Authentication token expired"}), 401

    if db is None and app.config.get("MONGO_URI"):
        mongo = PyMongo(app)
        db = mongo.db
    if db is None:
        app.logger.warning(
            "MONGO_URI is not set. Table-backed routes will return 503."
        )
    else:
        try:
            db.wishlist.create_index(
                [("user_id", 1), ("product_id", 1)], unique=True
            )
            db.orders.create_index([("user_id", 1), ("created_at", -1)])
            db.reviews.create_index([("created_at", -1)])
            db.vendors.create_index("contact_email")
        except Exception as exc:
            app.logger.warning("Unable to ensure table indexes: %s", exc)

    # --- Helpers ---

    ALLOWED_USER_ROLES = {"admin", "vendor", "customer"}
    PRODUCT_STATUSES = {"active", "pending", "draft", "archived"}
    VENDOR_DOCUMENT_FOLDER = "vendor-docs"
    PRODUCT_IMAGE_FOLDER = "product-images"
    ABSOLUTE_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
    CATEGORY_LABELS = {
        "home": "Home & Living",
        "fashion": "Fashion & Accessories",
        "art": "Art & Collectibles",
        "wellness": "Wellness",
    }
    PASSWORD_RESET_OTP_LENGTH = 6
    PASSWORD_RESET_EXPIRATION_MINUTES = 60 * 24
    PRODUCT_WRITABLE_FIELDS = (
        "title",
        "description",
        "price",
        "stock",
        "status",
        "images",
        "categories",
        "tags",
        "low_stock_threshold",
        "vendor_email",
        "vendor_id",
    )

    def require_database():
        if db is None:
            return jsonify({"message": "Database not configured"}), 503
        return None

    def upstream_error(message: str, exc: Exception):
        app.logger.error("%s: %s", message, exc)
        return jsonify({"message": message, "detail": str(exc)}), 500

    def unexpected_error(context: str, exc: Exception):
        app.logger.exception("%s: %s", context, exc)
        return jsonify({"message": "Unexpected server error"}), 500

    def require_admin_key():
        provided = (request.headers.get("X-Admin-Key") or "").strip()
        expected = str(app.config.get("ADMIN_KEY") or "")
        if not provided or not secrets.compare_digest(provided, expected):
            return jsonify({"message": "Forbidden"}), 403
        return None

    def normalize_role(value: Optional[str]) -> str:
        normalized = str(value or "").strip().lower()
        return normalized if normalized in ALLOWED_USER_ROLES else "customer"

    def serialize_user_profile(user_document) -> Dict[str, object]:
        if not user_document:
            return {}
        return {
            "id": str(user_document.get("_id")),
            "name": user_document.get("name", "") or "",
            "email": user_document.get("email", "") or "",
            "role": normalize_role(user_document.get("role")),
            "created_at": format_timestamp(user_document.get("created_at")),
        }

    def build_upload_url(key: Optional[str]) -> str:
        if not key:
            return ""

        sanitized = str(key).strip().lstrip("/")
        if not sanitized:
            return ""

        return urljoin(request.host_url, f"uploads/{sanitized}")

    def to_public_url(key) -> str:
        """Rewrite a stored image key into a URL clients can display directly."""
        if key is None:
            return ""
        trimmed = str(key).strip()
        if not trimmed or ABSOLUTE_URL_PATTERN.match(trimmed):
            return trimmed
        if trimmed.startswith("/uploads/"):
            trimmed = trimmed[len("/uploads/"):]
        encoded = "/".join(quote(part, safe="") for part in trimmed.split("/"))
        storage_base = app.config.get("STORAGE_PUBLIC_URL", "").rstrip("/")
        if storage_base:
            return f"{storage_base}/{encoded}"
        return build_upload_url(encoded)

    def parse_image_urls(value) -> List[str]:
        urls = []
        for entry in parse_json_list(value):
            url = to_public_url(entry)
            if url:
                urls.append(url)
        return urls

    def resolve_category_label(value) -> str:
        normalized = normalize_category_name(value)
        return CATEGORY_LABELS.get(normalized.lower(), normalized)

    def serialize_product(product_document) -> Dict[str, object]:
        if not product_document:
            return {}
        low_stock = product_document.get("low_stock_threshold")
        return {
            "id": str(product_document.get("_id")),
            "title": product_document.get("title", "") or "",
            "description": product_document.get("description") or "",
            "price": round(safe_float(product_document.get("price"), 0.0), 2),
            "images": parse_image_urls(product_document.get("images")),
            "vendor_email": product_document.get("vendor_email") or None,
            "vendor_id": product_document.get("vendor_id") or None,
            "status": product_document.get("status") or "pending",
            "stock": safe_positive_int(product_document.get("stock"), 0),
            "low_stock_threshold": safe_positive_int(low_stock, 0)
            if low_stock is not None
            else None,
            "categories": normalize_text_list(product_document.get("categories")) or [],
            "tags": normalize_text_list(product_document.get("tags")) or [],
            "created_at": format_timestamp(product_document.get("created_at")),
        }

    def serialize_product_summary(product_document) -> Dict[str, object]:
        return {
            "id": str(product_document.get("_id")),
            "title": product_document.get("title", "") or "",
            "images": parse_image_urls(product_document.get("images")),
        }

    def serialize_vendor(vendor_document) -> Dict[str, object]:
        if not vendor_document:
            return {}
        return {
            "id": str(vendor_document.get("_id")),
            "business_name": vendor_document.get("business_name", "") or "",
            "contact_email": vendor_document.get("contact_email", "") or "",
            "primary_category": vendor_document.get("primary_category", "") or "",
            "location": vendor_document.get("location", "") or "",
            "your_story": vendor_document.get("your_story", "") or "",
            "sustainability_practices": vendor_document.get(
                "sustainability_practices"
            )
            or [],
            "verification_document_url": build_upload_url(
                vendor_document.get("verification_document")
            )
            or None,
            "status": vendor_document.get("status") or "pending",
            "created_at": format_timestamp(vendor_document.get("created_at")),
            "updated_at": format_timestamp(vendor_document.get("updated_at")),
        }

    def serialize_wishlist_row(row) -> Dict[str, object]:
        return {
            "id": str(row.get("_id")),
            "user_id": row.get("user_id", ""),
            "product_id": row.get("product_id", ""),
            "created_at": format_timestamp(row.get("created_at")),
        }

    def serialize_order_row(row) -> Dict[str, object]:
        return {
            "id": str(row.get("_id")),
            "user_id": row.get("user_id", ""),
            "product_id": row.get("product_id", ""),
            "quantity": safe_positive_int(row.get("quantity"), 1),
            "status": row.get("status") or "completed",
            "created_at": format_timestamp(row.get("created_at")),
        }

    def serialize_review(review_document, product=None) -> Dict[str, object]:
        reviewer_name = (
            review_document.get("user_name")
            or review_document.get("reviewer_name")
            or ""
        )
        return {
            "id": str(review_document.get("_id")),
            "user_id": review_document.get("user_id") or None,
            "product_id": review_document.get("product_id", ""),
            "order_id": review_document.get("order_id") or None,
            "user_name": reviewer_name,
            "reviewer_name": reviewer_name,
            "rating": safe_positive_int(review_document.get("rating"), 0),
            "comment": review_document.get("comment") or "",
            "attachments": [
                str(item) for item in review_document.get("attachments") or []
            ],
            "created_at": format_timestamp(review_document.get("created_at")),
            "product": product,
        }

    def save_upload(file_storage, folder: str, allowed_extensions=None):
        if not file_storage or not getattr(file_storage, "filename", ""):
            return None, "A file is required."

        original_filename = secure_filename(file_storage.filename)
        if not original_filename:
            return None, "Please choose a valid file name."

        extension = os.path.splitext(original_filename)[1].lower()
        if allowed_extensions is not None and extension.lstrip(".") not in allowed_extensions:
            return None, "Unsupported file format."

        destination_folder = os.path.join(app.config["UPLOAD_FOLDER"], folder)
        os.makedirs(destination_folder, exist_ok=True)
        unique_filename = f"{uuid4().hex}{extension}"

        try:
            file_storage.save(os.path.join(destination_folder, unique_filename))
        except OSError:
            return None, "We could not store the uploaded file. Please try again."

        return f"{folder}/{unique_filename}", None

    def remove_upload(key: Optional[str]):
        if not key:
            return
        target = os.path.join(app.config["UPLOAD_FOLDER"], str(key))
        try:
            os.remove(target)
        except OSError:
            return

    def is_pdf_upload(file_storage) -> bool:
        mimetype = (getattr(file_storage, "mimetype", "") or "").lower()
        filename = (getattr(file_storage, "filename", "") or "").lower()
        return mimetype == "application/pdf" or filename.endswith(".pdf")

    def vendor_folder_name(vendor_email: Optional[str]) -> str:
        if not vendor_email:
            return "anonymous"
        return re.sub(r"[^a-z0-9\-_.]", "_", vendor_email, flags=re.IGNORECASE)

    def build_product_document(payload: Dict, defaults: Dict) -> Dict[str, object]:
        price = payload.get("price")
        stock = payload.get("stock")
        low_stock = payload.get("low_stock_threshold")
        return {
            "vendor_email": normalize_email(payload.get("vendor_email"))
            or defaults.get("vendor_email")
            or None,
            "vendor_id": payload.get("vendor_id") or None,
            "title": str(payload.get("title") or "").strip(),
            "description": payload.get("description") or None,
            "price": round(safe_float(price, 0.0), 2) if price is not None else 0,
            "stock": safe_positive_int(stock, 0) if stock is not None else 0,
            "status": str(payload.get("status") or defaults["status"]).strip().lower(),
            "images": parse_json_list(payload.get("images")) or None,
            "categories": normalize_text_list(payload.get("categories")),
            "tags": normalize_text_list(payload.get("tags")),
            "low_stock_threshold": safe_positive_int(low_stock, 0)
            if low_stock is not None
            else None,
            "created_at": datetime.utcnow(),
        }

    def generate_otp_code(length: int = PASSWORD_RESET_OTP_LENGTH) -> str:
        upper_bound = 10**length
        return f"{secrets.randbelow(upper_bound):0{length}d}"

    def begin_password_reset(user_document) -> Tuple[str, datetime]:
        otp = generate_otp_code()
        expires_at = datetime.utcnow() + timedelta(
            minutes=PASSWORD_RESET_EXPIRATION_MINUTES
        )
        db.users.update_one(
            {"_id": user_document["_id"]},
            {
                "$set": {
                    "password_reset_otp": otp,
                    "password_reset_otp_expiration": expires_at,
                }
            },
        )
        return otp, expires_at

    def clear_password_reset_state(user_id):
        db.users.update_one(
            {"_id": user_id},
            {
                "$unset": {
                    "password_reset_otp": "",
                    "password_reset_otp_expiration": "",
                }
            },
        )

    def send_email_via_resend(payload: Dict[str, object], api_key: str):
        configured_api_key = (api_key or "").strip()
        if not configured_api_key:
            return False, "Resend API key is not configured."

        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = configured_api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            return False, str(exc)
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)

        return True, None

    def send_vendor_welcome_email(
        recipient_email: str, otp: str, business_name: str
    ) -> Tuple[bool, Optional[str]]:
        greeting = business_name or "there"
        text_body = (
            f"Hi {greeting}, your CraftCircle vendor application has been approved.\n"
            f"Use the code {otp} on the password reset page to choose your password. "
            f"The code expires in {PASSWORD_RESET_EXPIRATION_MINUTES // 60} hours.\n\n"
            "The CraftCircle Team"
        )
        payload: Dict[str, object] = {
            "from": f"CraftCircle <{app.config['VENDOR_WELCOME_SENDER']}>",
            "to": [recipient_email],
            "subject": "Your CraftCircle vendor account is ready",
            "text": text_body,
        }
        return send_email_via_resend(payload, app.config.get("RESEND_API_KEY", ""))

    def provision_vendor_account(vendor_document) -> Dict[str, object]:
        """Create the vendor's sign-in account and mail a reset code.

        Failures are reported back to the caller and never raised.
        """
        email = normalize_email(vendor_document.get("contact_email"))
        if not email:
            return {"ok": False, "error": "Vendor has no contact email."}

        try:
            user_document = db.users.find_one({"email": email})
            if not user_document:
                temporary_password = secrets.token_urlsafe(16)
                db.users.insert_one(
                    {
                        "email": email,
                        "name": vendor_document.get("business_name", "") or "",
                        "password": bcrypt.hashpw(
                            temporary_password.encode("utf-8"), bcrypt.gensalt()
                        ),
                        "role": "vendor",
                        "vendor_id": str(vendor_document.get("_id")),
                        "created_at": datetime.utcnow(),
                    }
                )
                user_document = db.users.find_one({"email": email})
            elif normalize_role(user_document.get("role")) == "customer":
                db.users.update_one(
                    {"_id": user_document["_id"]}, {"$set": {"role": "vendor"}}
                )

            otp, _ = begin_password_reset(user_document)
        except PyMongoError as exc:
            app.logger.warning("Vendor account setup failed for %s: %s", email, exc)
            return {"ok": False, "error": str(exc)}

        sent, error_details = send_vendor_welcome_email(
            email, otp, vendor_document.get("business_name", "") or ""
        )
        if not sent:
            app.logger.warning(
                "Vendor welcome email not delivered to %s: %s", email, error_details
            )
            return {"ok": False, "error": error_details}

        return {"ok": True, "email": email}

    def update_vendor_status(vendor_id: str, status: str):
        vendor_object_id = normalize_object_id_value(vendor_id)
        if vendor_object_id is None:
            return None, (jsonify({"message": "Invalid vendor identifier."}), 400)

        db.vendors.update_one(
            {"_id": vendor_object_id},
            {"$set": {"status": status, "updated_at": datetime.utcnow()}},
        )
        vendor_document = db.vendors.find_one({"_id": vendor_object_id})
        if not vendor_document:
            return None, (jsonify({"message": "Vendor not found."}), 404)
        return vendor_document, None

    def fetch_product(product_id: str):
        object_id = normalize_object_id_value(product_id)
        if object_id is None:
            return None, (jsonify({"message": "Invalid product identifier."}), 400)

        product_document = db.products.find_one({"_id": object_id})
        if not product_document:
            return None, (jsonify({"message": "Product not found."}), 404)

        return product_document, None

    def request_field(payload: Dict, name: str) -> str:
        value = payload.get(name)
        if value is None:
            value = request.args.get(name)
        return str(value).strip() if value is not None else ""

    def get_shipping_provider() -> str:
        configured = str(app.config.get("SHIPPING_PROVIDER") or "").strip().lower()
        if configured:
            return configured
        return "easyship" if app.config.get("EASYSHIP_API_KEY") else ""

    def is_hardcoded_shipping() -> bool:
        return str(app.config.get("SHIPPING_HARDCODE") or "").strip().lower() in {
            "true",
            "1",
        }

    def easyship_headers() -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {app.config['EASYSHIP_API_KEY']}",
        }

    def easyship_base_url() -> str:
        return str(app.config.get("EASYSHIP_BASE_URL") or "").rstrip("/")

    def shipping_provider_error(provider: str):
        if provider != "easyship":
            return (
                jsonify(
                    {
                        "error": "no_provider",
                        "provider": provider or None,
                        "message": "No supported shipping provider is configured.",
                    }
                ),
                501,
            )
        if not app.config.get("EASYSHIP_API_KEY") or not easyship_base_url():
            return (
                jsonify(
                    {
                        "error": "missing_credentials",
                        "message": "Shipping provider credentials are missing.",
                    }
                ),
                500,
            )
        return None

    def relay_provider_response(response):
        try:
            return jsonify(response.json()), response.status_code
        except ValueError:
            return app.response_class(
                response.text, status=response.status_code, mimetype="text/plain"
            )

    def fallback_rates_response(payload: Dict):
        salt = app.config.get("SHIPPING_HARDCODE_SALT") or ""
        rates = pricing.build_fallback_rates(
            pricing.collect_source_items(payload),
            salt,
            app.config.get("SHIPPING_CURRENCY") or "INR",
        )
        return jsonify(
            {
                "generatedAt": int(time.time() * 1000),
                "hardcoded": True,
                "seed": salt or None,
                "rates": rates,
            }
        )

    def invalid_postal_code_response():
        return (
            jsonify(
                {
                    "error": "invalid_postal_code",
                    "message": "Postal code must be exactly 6 digits (0-9)",
                }
            ),
            400,
        )

    def build_rate_request(payload: Dict):
        origin = payload.get("origin")
        destination = payload.get("destination")
        parcels = payload.get("parcels")

        to_pincode = pricing.extract_pincode(payload)
        if (not origin or not destination or not parcels) and to_pincode:
            if not destination and not pricing.is_valid_pincode(to_pincode):
                return None, invalid_postal_code_response()
            weight = pricing.safe_weight(
                payload.get("weight") or payload.get("actual_weight")
            )
            origin = origin or {
                "postal_code": str(app.config["EASYSHIP_PICKUP_PINCODE"]),
                "country_code": app.config["EASYSHIP_PICKUP_COUNTRY"],
            }
            destination = destination or {
                "postal_code": to_pincode,
                "country_code": payload.get("country_code")
                or payload.get("country")
                or "IN",
            }
            parcels = parcels or [
                {
                    "actual_weight": weight,
                    "length": safe_float(payload.get("length"), 10) or 10,
                    "width": safe_float(payload.get("width"), 10) or 10,
                    "height": safe_float(payload.get("height"), 5) or 5,
                    "items": [
                        {
                            "description": payload.get("item_description") or "item",
                            "quantity": safe_positive_int(payload.get("qty"), 1) or 1,
                            "value": safe_float(payload.get("value"), 0.0),
                        }
                    ],
                }
            ]

        if not origin or not destination or not parcels:
            return None, (
                jsonify(
                    {
                        "error": "invalid_payload",
                        "message": "Provide origin/destination/parcels or to_pincode+weight",
                    }
                ),
                400,
            )

        rate_request = {
            "origin_address": origin,
            "destination_address": destination,
            "parcels": parcels,
        }
        return rate_request, None

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    @app.route("/api/ping")
    def ping():
        return jsonify({"message": os.getenv("PING_MESSAGE", "ping")})

    # Accounts

    @app.route("/api/register", methods=["POST"])
    def register():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        name = str(payload.get("name", "")).strip()
        password = str(payload.get("password", ""))

        if not email or not name or not password:
            return (
                jsonify(
                    {
                        "message": "Email, name, and password are required to create an account."
                    }
                ),
                400,
            )

        try:
            if db.users.find_one({"email": email}):
                return (
                    jsonify({"message": "An account with this email already exists."}),
                    400,
                )

            user_document = {
                "email": email,
                "name": name,
                "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
                "role": "customer",
                "created_at": datetime.utcnow(),
            }
            insert_result = db.users.insert_one(user_document)
            user_document["_id"] = insert_result.inserted_id
        except PyMongoError as exc:
            return upstream_error("Failed to create account", exc)

        token = create_access_token(identity=email)
        return (
            jsonify(
                {
                    "message": "Account created.",
                    "access_token": token,
                    "user": serialize_user_profile(user_document),
                }
            ),
            201,
        )

    @app.route("/api/login", methods=["POST"])
    def login():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        try:
            user = db.users.find_one({"email": email})
            if not user or not bcrypt.checkpw(password.encode("utf-8"), user["password"]):
                return jsonify({"message": "Invalid credentials"}), 401

            db.users.update_one(
                {"_id": user["_id"]},
                {"$set": {"last_login_at": datetime.utcnow()}},
            )
        except PyMongoError as exc:
            return upstream_error("Failed to sign in", exc)

        token = create_access_token(identity=email)
        return jsonify({"access_token": token, "user": serialize_user_profile(user)})

    @app.route("/api/auth/verify", methods=["POST"])
    def verify_token():
        payload = request.get_json(silent=True) or {}
        id_token = str(payload.get("idToken") or "").strip()
        if not id_token:
            return jsonify({"message": "idToken is required"}), 400

        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            decoded = decode_token(id_token)
        except (PyJWTError, JWTExtendedException) as exc:
            app.logger.warning("Error verifying id token: %s", exc)
            return jsonify({"message": "Invalid or expired token"}), 401

        try:
            user = db.users.find_one({"email": normalize_email(decoded.get("sub"))})
        except PyMongoError as exc:
            return upstream_error("Failed to fetch user", exc)
        if not user:
            return jsonify({"message": "Invalid or expired token"}), 401

        return jsonify(
            {
                "decoded": {"sub": decoded.get("sub"), "exp": decoded.get("exp")},
                "user": serialize_user_profile(user),
            }
        )

    @app.route("/api/reset-password", methods=["POST"])
    def reset_password():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        otp = str(payload.get("otp", "")).strip()
        new_password = str(payload.get("new_password", ""))

        if not email or not otp or not new_password:
            return (
                jsonify({"message": "Email, code, and new password are required."}),
                400,
            )

        try:
            user = db.users.find_one({"email": email})
            stored_otp = str((user or {}).get("password_reset_otp") or "")
            expires_at = (user or {}).get("password_reset_otp_expiration")
            if (
                not user
                or not stored_otp
                or not secrets.compare_digest(stored_otp, otp)
            ):
                return jsonify({"message": "Invalid or expired code."}), 400
            if not isinstance(expires_at, datetime) or expires_at < datetime.utcnow():
                clear_password_reset_state(user["_id"])
                return jsonify({"message": "Invalid or expired code."}), 400

            db.users.update_one(
                {"_id": user["_id"]},
                {
                    "$set": {
                        "password": bcrypt.hashpw(
                            new_password.encode("utf-8"), bcrypt.gensalt()
                        )
                    }
                },
            )
            clear_password_reset_state(user["_id"])
        except PyMongoError as exc:
            return upstream_error("Failed to reset password", exc)

        return jsonify({"message": "Password updated. You can sign in now."})

    # Products

    @app.route("/api/products", methods=["GET"])
    def list_products():
        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            ids_param = request.args.get("ids")
            if ids_param:
                requested_ids = [
                    value.strip() for value in ids_param.split(",") if is_valid_id(value)
                ]
                object_ids = normalize_object_id_list(requested_ids)
                if not object_ids:
                    return jsonify({"products": []})
                documents = db.products.find({"_id": {"$in": object_ids}})
                return jsonify(
                    {"products": [serialize_product(document) for document in documents]}
                )

            search_term = (request.args.get("q") or "").strip()
            category = normalize_category_name(request.args.get("category"))
            page = max(1, parse_int(request.args.get("page"), 1))
            per_page = max(1, min(100, parse_int(request.args.get("per_page"), 20)))

            query: Dict[str, object] = {"status": "active"}
            if category:
                query["categories"] = category
            if search_term:
                regex = re.compile(re.escape(search_term), re.IGNORECASE)
                query["$or"] = [{"title": regex}, {"vendor_email": regex}]

            total = db.products.count_documents(query)
            cursor = (
                db.products.find(query)
                .sort("_id", -1)
                .skip((page - 1) * per_page)
                .limit(per_page)
            )
            products = [serialize_product(document) for document in cursor]
        except PyMongoError as exc:
            return upstream_error("Failed to fetch products", exc)
        except Exception as exc:
            return unexpected_error("GET /api/products", exc)

        return jsonify(
            {"products": products, "total": total, "page": page, "per_page": per_page}
        )

    # Vendors

    @app.route("/api/vendor/apply", methods=["POST"])
    def apply_as_vendor():
        document_file = request.files.get("document")
        if not document_file or not document_file.filename:
            return jsonify({"message": "No file uploaded"}), 400
        if not is_pdf_upload(document_file):
            return jsonify({"message": "Only PDF files are allowed"}), 400

        form = request.form
        business_name = str(form.get("business_name") or "").strip()
        contact_email = normalize_email(form.get("contact_email"))
        if not business_name or not contact_email:
            return (
                jsonify({"message": "business_name and contact_email are required"}),
                400,
            )

        unavailable = require_database()
        if unavailable:
            return unavailable

        document_key, upload_error = save_upload(
            document_file, VENDOR_DOCUMENT_FOLDER, {"pdf"}
        )
        if upload_error:
            return jsonify({"message": "File upload failed", "detail": upload_error}), 500

        vendor_document = {
            "business_name": business_name,
            "contact_email": contact_email,
            "primary_category": resolve_category_label(form.get("primary_category")),
            "location": str(form.get("location") or "").strip(),
            "your_story": str(form.get("your_story") or "").strip(),
            "sustainability_practices": [
                str(item).strip()
                for item in parse_json_list(form.get("sustainability_practices"))
                if str(item).strip()
            ],
            "verification_document": document_key,
            "status": "pending",
            "created_at": datetime.utcnow(),
        }

        try:
            db.vendors.insert_one(vendor_document)
        except PyMongoError as exc:
            remove_upload(document_key)
            return upstream_error("Failed to save vendor application", exc)

        return jsonify({"message": "Application submitted", "status": "pending"})

    @app.route("/api/vendor/products", methods=["GET"])
    def list_vendor_products():
        unavailable = require_database()
        if unavailable:
            return unavailable

        vendor_email = normalize_email(request.args.get("email"))
        try:
            if vendor_email:
                cursor = db.products.find({"vendor_email": vendor_email}).sort("_id", -1)
            else:
                cursor = db.products.find().sort("_id", -1).limit(100)
            products = [serialize_product(document) for document in cursor]
        except PyMongoError as exc:
            return upstream_error("Failed to fetch products", exc)

        return jsonify({"products": products})

    @app.route("/api/vendor/products", methods=["POST"])
    def create_vendor_product():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        if not (payload.get("vendor_email") or payload.get("vendor_id")) or not str(
            payload.get("title") or ""
        ).strip():
            return (
                jsonify({"message": "vendor_email/vendor_id and title are required"}),
                400,
            )

        product_document = build_product_document(payload, {"status": "pending"})
        if product_document["status"] not in PRODUCT_STATUSES:
            return jsonify({"message": "Unsupported product status."}), 400
        try:
            insert_result = db.products.insert_one(product_document)
            product_document["_id"] = insert_result.inserted_id
        except PyMongoError as exc:
            return upstream_error("Failed to create product", exc)

        return jsonify({"product": serialize_product(product_document)})

    @app.route("/api/vendor/products/bulk", methods=["POST"])
    def create_vendor_products_bulk():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        vendor_email = normalize_email(payload.get("vendor_email"))
        entries = payload.get("products")
        if not vendor_email or not isinstance(entries, list):
            return (
                jsonify({"message": "vendor_email and products array required"}),
                400,
            )

        documents = [
            build_product_document(
                entry, {"status": "draft", "vendor_email": vendor_email}
            )
            for entry in entries
            if isinstance(entry, dict) and str(entry.get("title") or "").strip()
        ]
        if not documents:
            return jsonify({"products": []})

        try:
            insert_result = db.products.insert_many(documents)
        except PyMongoError as exc:
            return upstream_error("Failed to insert products", exc)

        for document, inserted_id in zip(documents, insert_result.inserted_ids):
            document["_id"] = inserted_id
        return jsonify({"products": [serialize_product(document) for document in documents]})

    @app.route("/api/vendor/products/upload-image", methods=["POST"])
    def upload_vendor_product_images():
        image_files = request.files.getlist("images")
        if not image_files:
            return jsonify({"message": "No files uploaded"}), 400

        folder = f"{PRODUCT_IMAGE_FOLDER}/{vendor_folder_name(normalize_email(request.form.get('vendor_email')))}"
        urls: List[str] = []
        for image_file in image_files:
            image_key, upload_error = save_upload(
                image_file, folder, app.config["PRODUCT_ALLOWED_EXTENSIONS"]
            )
            if upload_error:
                app.logger.warning(
                    "Skipped product image %s: %s",
                    getattr(image_file, "filename", ""),
                    upload_error,
                )
                continue
            urls.append(build_upload_url(image_key))

        return jsonify({"urls": urls})

    @app.route("/api/vendor/products/<product_id>", methods=["PATCH"])
    def update_vendor_product(product_id: str):
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        updates: Dict[str, object] = {}
        for field in PRODUCT_WRITABLE_FIELDS:
            if field not in payload:
                continue
            value = payload.get(field)
            if field in ("categories", "tags"):
                value = normalize_text_list(value)
            elif field == "price":
                value = round(safe_float(value, 0.0), 2)
            elif field in ("stock", "low_stock_threshold"):
                value = safe_positive_int(value, 0) if value is not None else None
            elif field == "images":
                value = parse_json_list(value) or None
            elif field == "status":
                value = str(value or "").strip().lower()
                if value not in PRODUCT_STATUSES:
                    return jsonify({"message": "Unsupported product status."}), 400
            updates[field] = value

        try:
            product_document, lookup_error = fetch_product(product_id)
            if lookup_error:
                return lookup_error
            if updates:
                updates["updated_at"] = datetime.utcnow()
                db.products.update_one({"_id": product_document["_id"]}, {"$set": updates})
                product_document = db.products.find_one({"_id": product_document["_id"]})
        except PyMongoError as exc:
            return upstream_error("Failed to update product", exc)

        return jsonify({"product": serialize_product(product_document)})

    @app.route("/api/vendor/products/<product_id>", methods=["DELETE"])
    def delete_vendor_product(product_id: str):
        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            product_document, lookup_error = fetch_product(product_id)
            if lookup_error:
                return lookup_error
            db.products.delete_one({"_id": product_document["_id"]})
        except PyMongoError as exc:
            return upstream_error("Failed to delete product", exc)

        return jsonify({"success": True})

    # Admin

    @app.route("/api/admin/vendors", methods=["GET"])
    def admin_list_vendors():
        unavailable = require_database()
        if unavailable:
            return unavailable

        email = normalize_email(request.args.get("email"))
        try:
            if email:
                cursor = db.vendors.find({"contact_email": email}).limit(1)
            else:
                cursor = db.vendors.find().sort("_id", -1).limit(200)
            vendors = [serialize_vendor(document) for document in cursor]
        except PyMongoError as exc:
            return upstream_error("Failed to fetch vendors", exc)

        return jsonify({"vendors": vendors})

    @app.route("/api/admin/vendors/verify", methods=["POST"])
    def admin_verify_vendor():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        if not email:
            return jsonify({"message": "email is required"}), 400

        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            vendor_document = db.vendors.find_one({"contact_email": email})
        except PyMongoError as exc:
            return upstream_error("Failed to fetch vendor", exc)

        return jsonify(
            {"vendor": serialize_vendor(vendor_document) if vendor_document else None}
        )

    @app.route("/api/admin/vendors/<vendor_id>", methods=["PATCH"])
    def admin_update_vendor(vendor_id: str):
        payload = request.get_json(silent=True) or {}
        # Proxies sometimes drop PATCH bodies, so the query string and header count too.
        status = (
            payload.get("status")
            or request.args.get("status")
            or request.headers.get("X-Status")
            or ""
        )
        status = str(status).strip()
        if not status:
            return jsonify({"message": "status is required"}), 400

        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            vendor_document, status_error = update_vendor_status(vendor_id, status)
        except PyMongoError as exc:
            return upstream_error("Failed to update vendor", exc)
        if status_error:
            return status_error

        return jsonify({"vendor": serialize_vendor(vendor_document)})

    @app.route("/api/admin/vendors/<vendor_id>/approve", methods=["POST"])
    def admin_approve_vendor(vendor_id: str):
        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            vendor_document, status_error = update_vendor_status(vendor_id, "approved")
        except PyMongoError as exc:
            return upstream_error("Failed to approve vendor", exc)
        if status_error:
            return status_error

        account_setup = provision_vendor_account(vendor_document)
        return jsonify(
            {"vendor": serialize_vendor(vendor_document), "account_setup": account_setup}
        )

    @app.route("/api/admin/vendors/<vendor_id>/reject", methods=["POST"])
    def admin_reject_vendor(vendor_id: str):
        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            vendor_document, status_error = update_vendor_status(vendor_id, "rejected")
        except PyMongoError as exc:
            return upstream_error("Failed to reject vendor", exc)
        if status_error:
            return status_error

        return jsonify({"vendor": serialize_vendor(vendor_document)})

    @app.route("/api/admin/reviews/<review_id>", methods=["DELETE"])
    def admin_delete_review(review_id: str):
        forbidden = require_admin_key()
        if forbidden:
            return forbidden

        unavailable = require_database()
        if unavailable:
            return unavailable

        review_object_id = normalize_object_id_value(review_id)
        if review_object_id is None:
            return jsonify({"message": "Invalid review identifier."}), 400

        try:
            review_document = db.reviews.find_one({"_id": review_object_id})
            if review_document:
                db.reviews.delete_one({"_id": review_object_id})
        except PyMongoError as exc:
            return upstream_error("Failed to delete review", exc)

        return jsonify(
            {"deleted": serialize_review(review_document) if review_document else None}
        )

    @app.route("/api/admin/reviews/delete", methods=["POST"])
    def admin_delete_reviews_bulk():
        payload = request.get_json(silent=True) or {}
        ids = payload.get("ids")
        if not isinstance(ids, list) or not ids:
            return jsonify({"message": "ids array required"}), 400

        forbidden = require_admin_key()
        if forbidden:
            return forbidden

        unavailable = require_database()
        if unavailable:
            return unavailable

        object_ids = normalize_object_id_list(ids)
        try:
            review_documents = list(db.reviews.find({"_id": {"$in": object_ids}}))
            if review_documents:
                db.reviews.delete_many({"_id": {"$in": object_ids}})
        except PyMongoError as exc:
            return upstream_error("Failed to bulk delete reviews", exc)

        return jsonify(
            {"deleted": [serialize_review(document) for document in review_documents]}
        )

    # Wishlist

    @app.route("/api/wishlist", methods=["GET"])
    def list_wishlist():
        unavailable = require_database()
        if unavailable:
            return unavailable

        user_id = str(request.args.get("user_id") or "").strip()
        if not user_id:
            return jsonify({"message": "user_id required"}), 400

        try:
            cursor = db.wishlist.find({"user_id": user_id}).sort("created_at", -1)
            rows = [serialize_wishlist_row(row) for row in cursor]
        except PyMongoError as exc:
            return upstream_error("Failed to fetch wishlist", exc)

        return jsonify(rows)

    @app.route("/api/wishlist", methods=["POST"])
    def add_wishlist_entry():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        user_id = request_field(payload, "user_id")
        product_id = request_field(payload, "product_id")
        if not user_id or not is_valid_id(product_id):
            return jsonify({"message": "user_id and product_id required"}), 400

        key = {"user_id": user_id, "product_id": product_id}
        try:
            db.wishlist.update_one(
                key,
                {"$setOnInsert": {**key, "created_at": datetime.utcnow()}},
                upsert=True,
            )
            row = db.wishlist.find_one(key)
        except DuplicateKeyError:
            # A concurrent insert for the same pair won the race.
            row = db.wishlist.find_one(key)
        except PyMongoError as exc:
            return upstream_error("Failed to add wishlist entry", exc)

        return jsonify(serialize_wishlist_row(row or key)), 201

    @app.route("/api/wishlist", methods=["DELETE"])
    def remove_wishlist_entry():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        user_id = request_field(payload, "user_id")
        product_id = request_field(payload, "product_id")
        if not user_id or not product_id:
            return jsonify({"message": "user_id and product_id required"}), 400

        try:
            result = db.wishlist.delete_one({"user_id": user_id, "product_id": product_id})
        except PyMongoError as exc:
            return upstream_error("Failed to remove wishlist entry", exc)

        return jsonify({"deleted": True, "count": result.deleted_count})

    # Orders

    @app.route("/api/orders", methods=["GET"])
    def list_orders():
        unavailable = require_database()
        if unavailable:
            return unavailable

        user_id = str(request.args.get("user_id") or "").strip()
        if not user_id:
            return jsonify({"message": "user_id required"}), 400

        try:
            cursor = db.orders.find({"user_id": user_id}).sort("created_at", -1)
            rows = [serialize_order_row(row) for row in cursor]
        except PyMongoError as exc:
            return upstream_error("Failed to fetch orders", exc)

        return jsonify(rows)

    @app.route("/api/orders", methods=["POST"])
    def create_order():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        user_id = request_field(payload, "user_id")
        product_id = request_field(payload, "product_id")
        if not user_id or not is_valid_id(product_id):
            return jsonify({"message": "user_id and product_id required"}), 400

        order_document = {
            "user_id": user_id,
            "product_id": product_id,
            "quantity": safe_positive_int(payload.get("quantity"), 1) or 1,
            "status": str(payload.get("status") or "completed").strip() or "completed",
            "created_at": datetime.utcnow(),
        }
        try:
            insert_result = db.orders.insert_one(order_document)
            order_document["_id"] = insert_result.inserted_id
        except PyMongoError as exc:
            return upstream_error("Failed to create order", exc)

        return jsonify(serialize_order_row(order_document)), 201

    @app.route("/api/orders", methods=["DELETE"])
    def delete_orders():
        unavailable = require_database()
        if unavailable:
            return unavailable

        payload = request.get_json(silent=True) or {}
        user_id = request_field(payload, "user_id")
        order_id = request_field(payload, "order_id")
        product_id = request_field(payload, "product_id")
        if not user_id:
            return jsonify({"message": "user_id required"}), 400
        if not order_id and not product_id:
            return jsonify({"message": "order_id or product_id required"}), 400

        try:
            if order_id:
                order_object_id = normalize_object_id_value(order_id)
                if order_object_id is None:
                    return jsonify({"message": "Invalid order identifier."}), 400
                result = db.orders.delete_one({"_id": order_object_id, "user_id": user_id})
            else:
                result = db.orders.delete_many({"user_id": user_id, "product_id": product_id})
        except PyMongoError as exc:
            return upstream_error("Failed to delete orders", exc)

        return jsonify({"deleted": result.deleted_count})

    # Reviews

    @app.route("/api/reviews", methods=["GET"])
    def list_reviews():
        unavailable = require_database()
        if unavailable:
            return unavailable

        try:
            review_documents = list(db.reviews.find().sort("created_at", -1))
        except PyMongoError as exc:
            return upstream_error("Failed to fetch reviews", exc)

        review_documents = [
            document
            for document in review_documents
            if document.get("user_id")
            and str(document.get("user_name") or document.get("reviewer_name") or "").strip()
        ]

        product_ids = normalize_object_id_list(
            {document.get("product_id") for document in review_documents}
        )
        products_by_id: Dict[str, Dict[str, object]] = {}
        if product_ids:
            try:
                for product_document in db.products.find({"_id": {"$in": product_ids}}):
                    summary = serialize_product_summary(product_document)
                    products_by_id[summary["id"]] = summary
            except PyMongoError as exc:
                app.logger.warning("Failed to fetch product metadata for reviews: %s", exc)

        return jsonify(
            [
                serialize_review(
                    document, products_by_id.get(str(document.get("product_id")))
                )
                for document in review_documents
            ]
        )

    @app.route("/api/reviews", methods=["POST"])
    @jwt_required()
    def create_review():
        unavailable = require_database()
        if unavailable:
            return unavailable

        current_email = normalize_email(get_jwt_identity())
        try:
            user_document = db.users.find_one({"email": current_email})
        except PyMongoError as exc:
            return upstream_error("Failed to fetch reviewer", exc)
        if not user_document:
            return jsonify({"message": "Invalid authentication token"}), 401

        payload = request.get_json(silent=True) or {}
        product_id = str(payload.get("productId") or payload.get("product_id") or "").strip()
        order_id = str(payload.get("orderId") or payload.get("order_id") or "").strip()
        if not product_id or not order_id or payload.get("rating") is None:
            return jsonify({"message": "productId, orderId and rating required"}), 400

        rating = parse_int(payload.get("rating"), 0)
        if rating < 1 or rating > 5:
            return jsonify({"message": "rating must be between 1 and 5"}), 400

        reviewer_name = (
            str(user_document.get("name") or "").strip()
            or user_document.get("email")
            or str(payload.get("reviewerName") or "").strip()
        )
        review_document = {
            "user_id": str(user_document["_id"]),
            "product_id": product_id,
            "order_id": order_id,
            "user_name": reviewer_name,
            "rating": rating,
            "comment": str(payload.get("text") or payload.get("comment") or ""),
            "attachments": [
                str(item) for item in parse_json_list(payload.get("attachments"))
            ],
            "created_at": datetime.utcnow(),
        }
        try:
            insert_result = db.reviews.insert_one(review_document)
            review_document["_id"] = insert_result.inserted_id
        except PyMongoError as exc:
            return upstream_error("Failed to save review", exc)

        return jsonify(serialize_review(review_document)), 201

    # Shipping

    @app.route("/api/shipping/estimate", methods=["POST"])
    def estimate_shipping():
        payload = request.get_json(silent=True) or {}
        origin = payload.get("origin")
        destination = payload.get("destination")

        pincode = pricing.extract_pincode(payload)
        if not origin and not destination and pincode is not None:
            if not pricing.is_valid_pincode(pincode):
                return invalid_postal_code_response()

        provider = get_shipping_provider()
        if is_hardcoded_shipping() or not provider:
            return fallback_rates_response(payload)

        provider_error = shipping_provider_error(provider)
        if provider_error:
            return provider_error

        rate_request, payload_error = build_rate_request(payload)
        if payload_error:
            return payload_error

        try:
            app.logger.info("Requesting %s rates for %s", provider, rate_request["destination_address"])
            response = requests.post(
                f"{easyship_base_url()}/rate/v1/rates",
                json=rate_request,
                headers=easyship_headers(),
            )
        except requests.RequestException as exc:
            return upstream_error("Shipping provider request failed", exc)

        if response.ok:
            try:
                provider_rates = response.json().get("rates")
            except (ValueError, AttributeError):
                provider_rates = None
            if not provider_rates:
                app.logger.warning(
                    "Shipping provider returned no rates, using seeded fallback."
                )
                return fallback_rates_response(payload)

        return relay_provider_response(response)

    @app.route("/api/shipping/shipment", methods=["POST"])
    def create_shipment():
        provider_error = shipping_provider_error(get_shipping_provider())
        if provider_error:
            return provider_error

        payload = request.get_json(silent=True) or {}
        parcel = payload.get("parcel")
        shipment_request: Dict[str, object] = {
            "origin_address": payload.get("origin"),
            "destination_address": payload.get("destination"),
            "parcels": parcel if isinstance(parcel, list) else [parcel],
            "platform_order_number": payload.get("order_id"),
        }
        if payload.get("courier_id"):
            shipment_request["courier_selection"] = {"id": payload.get("courier_id")}

        try:
            response = requests.post(
                f"{easyship_base_url()}/shipment/v1/shipments",
                json=shipment_request,
                headers=easyship_headers(),
            )
        except requests.RequestException as exc:
            return upstream_error("Shipping provider request failed", exc)

        return relay_provider_response(response)

    @app.route("/api/shipping/track", methods=["POST"])
    def track_shipment():
        provider_error = shipping_provider_error(get_shipping_provider())
        if provider_error:
            return provider_error

        payload = request.get_json(silent=True) or {}
        shipment_id = str(payload.get("shipment_id") or "").strip()
        tracking_number = str(payload.get("tracking_number") or "").strip()
        base_url = easyship_base_url()

        if shipment_id:
            candidates = [
                f"{base_url}/shipment/v1/shipments/{quote(shipment_id, safe='')}/tracking",
                f"{base_url}/shipment/v1/shipments/{quote(shipment_id, safe='')}",
            ]
        elif tracking_number:
            candidates = [
                f"{base_url}/tracking/v1/trackings/{quote(tracking_number, safe='')}"
            ]
        else:
            return (
                jsonify(
                    {
                        "error": "missing_parameters",
                        "message": "Provide shipment_id or tracking_number in body",
                    }
                ),
                400,
            )

        try:
            for url in candidates:
                response = requests.get(url, headers=easyship_headers())
                try:
                    return jsonify(response.json()), response.status_code
                except ValueError:
                    if response.ok:
                        return relay_provider_response(response)
        except requests.RequestException as exc:
            return upstream_error("Shipping provider request failed", exc)

        return jsonify({"error": "not_found", "message": "Shipment not found"}), 404

    @app.route("/api/shipping/debug", methods=["GET"])
    def shipping_debug():
        provider = get_shipping_provider()
        return jsonify(
            {
                "configured": bool(provider),
                "provider": provider or None,
                "hardcoded": is_hardcoded_shipping(),
                "easyship": {
                    "base": bool(easyship_base_url()),
                    "key": bool(app.config.get("EASYSHIP_API_KEY")),
                },
            }
        )

    return app
