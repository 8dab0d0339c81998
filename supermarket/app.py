from flask import Flask, render_template, request, redirect, url_for, session, flash, g, jsonify
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
import logging
import os

import click
from werkzeug.utils import secure_filename

from supermarket import accounts, orders
from supermarket import catalog as catalog_store
from supermarket.cart import DatabaseCartStore, SessionCartStore
from supermarket.checkout import checkout as run_checkout
from supermarket.config import Config
from supermarket.db import connect, init_schema
from supermarket.errors import (
    AccessDenied, CheckoutFailed, DispatchFailure, EmailTaken, EmptyCart, InsufficientStock,
    InvalidCartData, InvalidCredentials, NotFound, NotVerified, OTPExpired, OTPMismatch,
    ShopError, ValidationError,
)
from supermarket.mailer import Mailer, mail
from supermarket.otp import OTPCache

app = Flask(__name__)
app.config.from_object(Config)
app.config["UPLOAD_FOLDER"] = app.config["UPLOAD_FOLDER"] or os.path.join(app.static_folder, "images")

mail.init_app(app)
app.extensions["mailer"] = Mailer(mail)
app.extensions["otp_cache"] = OTPCache(app.config["OTP_TTL_SECONDS"])

audit_log = logging.getLogger("supermarket.audit")


#  Logging
def configure_logging(app):
    """App log and audit trail, both rotating files under LOG_DIR."""
    log_dir = Path(app.config["LOG_DIR"])
    log_dir.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(log_dir / "app.log", maxBytes=2_000_000, backupCount=3)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("supermarket")
    root.addHandler(handler)
    root.setLevel(app.config["LOG_LEVEL"])

    audit_handler = RotatingFileHandler(log_dir / "audit.log", maxBytes=2_000_000, backupCount=3)
    audit_handler.setFormatter(logging.Formatter("%(asctime)s | %(message)s"))
    audit_log.addHandler(audit_handler)
    audit_log.setLevel(logging.INFO)
    audit_log.propagate = False


configure_logging(app)


#  Utilities
def log_action(event: str, **fields):
    """Append human-readable audit entries."""
    audit_log.info("%s | %s", event, ", ".join(f"{k}={v}" for k, v in fields.items()))

def get_db():
    """One connection per request, schema ensured so a fresh deploy never crashes."""
    if "db" not in g:
        g.db = connect(app.config["DATABASE"])
        init_schema(g.db)
    return g.db

@app.teardown_appcontext
def close_db(exc):
    db = g.pop("db", None)
    if db is not None:
        db.close()

def get_otp_cache():
    return app.extensions["otp_cache"]

def get_mailer():
    return app.extensions["mailer"]

def get_cart():
    """Cart store for the configured backend."""
    if app.config["CART_BACKEND"] == "database":
        return DatabaseCartStore(get_db())
    return SessionCartStore(get_db(), session)

def current_user():
    return session.get("user")

def form_int(name, default):
    try:
        return int(request.form.get(name, default))
    except (TypeError, ValueError):
        return default

def allowed_image(filename):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in app.config["ALLOWED_IMAGE_EXTENSIONS"]

def save_image(file):
    """Store an uploaded product image and return its file name, or None if nothing was sent."""
    if file is None or not file.filename:
        return None
    filename = secure_filename(file.filename)
    if not filename or not allowed_image(filename):
        raise ValidationError("Image must be a png, jpg, jpeg, gif or webp file.")

    folder = app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    # avoid overwriting
    base, ext = os.path.splitext(filename)
    final_name, i = filename, 1
    while os.path.exists(os.path.join(folder, final_name)):
        final_name = f"{base}_{i}{ext}"
        i += 1
    file.save(os.path.join(folder, final_name))
    return final_name

def back(default="catalog"):
    """Redirect to the page the request came from, if it is one of ours."""
    ref = request.referrer
    if ref and ref.startswith(request.host_url):
        return redirect(ref)
    return redirect(url_for(default))

def wants_json():
    return (
        request.headers.get("X-Requested-With") == "XMLHttpRequest"
        or "application/json" in request.headers.get("Accept", "")
    )

# Inject cart summary into all templates (navbar)
@app.context_processor
def inject_cart_total():
    user = current_user()
    if not user:
        return {"user": None, "cart_total": 0, "cart_count": 0}
    store = get_cart()
    return {"user": user, "cart_total": store.total(user["id"]), "cart_count": store.count(user["id"])}


#  Access control
def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user():
            flash("Please log in to view this resource", "error")
            return redirect(url_for("login"))
        return view(*args, **kwargs)
    return wrapped

def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = current_user()
        if not user:
            flash("Please log in to view this resource", "error")
            return redirect(url_for("login"))
        if user.get("role") != accounts.ROLE_ADMIN:
            flash("Access denied", "error")
            return redirect(url_for("catalog"))
        return view(*args, **kwargs)
    return wrapped


#  Errors
@app.errorhandler(ShopError)
def handle_shop_error(exc):
    """Anything a route didn't handle itself: JSON for API clients, flash otherwise."""
    app.logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.path, exc.message)
    if wants_json():
        return jsonify(ok=False, error=type(exc).__name__, message=exc.message,
                       status=exc.status_code), exc.status_code
    flash(exc.message, "error")
    return back()


#        Public routes
def catalog_products():
    return catalog_store.list_products(get_db())

@app.route("/")
def catalog():
    """List products with optional substring search."""
    products = catalog_products()
    q = (request.args.get("q") or "").strip().lower()
    if q:
        products = [p for p in products if q in p.name.lower()]
    return render_template("catalog.html", products=products, q=q)

@app.route("/product/<int:product_id>")
def product_detail(product_id):
    try:
        product = catalog_store.get_product(get_db(), product_id)
    except NotFound as exc:
        flash(exc.message, "error")
        return redirect(url_for("catalog"))
    return render_template("product.html", product=product)


#        Cart
@app.route("/cart")
@login_required
def view_cart():
    store = get_cart()
    uid = current_user()["id"]
    return render_template("cart.html", items=store.get(uid), total=store.total(uid))

@app.route("/cart/add/<int:product_id>", methods=["POST"])
@login_required
def cart_add(product_id):
    qty = max(1, form_int("quantity", 1))
    try:
        line = get_cart().add(current_user()["id"], product_id, qty)
    except (NotFound, InsufficientStock) as exc:
        flash(exc.message, "error")
        return redirect(url_for("catalog"))

    log_action("add_to_cart", user_id=current_user()["id"], product_id=product_id, qty=qty,
               new_qty=line.quantity)
    flash("Product added to cart", "ok")
    return redirect(url_for("view_cart"))

@app.route("/cart/update/<int:product_id>", methods=["POST"])
@login_required
def cart_update(product_id):
    try:
        line = get_cart().update_quantity(current_user()["id"], product_id,
                                          action=request.form.get("action"),
                                          raw_quantity=request.form.get("quantity"))
    except NotFound as exc:
        flash(exc.message, "error")
        return redirect(url_for("view_cart"))
    log_action("update_cart", user_id=current_user()["id"], product_id=product_id, qty=line.quantity)
    flash("Cart updated", "ok")
    return redirect(url_for("view_cart"))

@app.route("/cart/delete/<int:product_id>", methods=["POST"])
@login_required
def cart_remove(product_id):
    get_cart().remove(current_user()["id"], product_id)
    log_action("remove_from_cart", user_id=current_user()["id"], product_id=product_id)
    flash("Product removed from cart", "ok")
    return redirect(url_for("view_cart"))


#        Checkout & orders
@app.route("/checkout", methods=["POST"])
@login_required
def checkout_submit():
    uid = current_user()["id"]
    try:
        order = run_checkout(get_db(), get_cart(), uid,
                             reserve_stock=app.config["DECREMENT_STOCK_ON_CHECKOUT"])
    except (EmptyCart, InvalidCartData, InsufficientStock, CheckoutFailed) as exc:
        flash(exc.message, "error")
        return redirect(url_for("view_cart"))

    session["last_order_id"] = order.id
    log_action("checkout", user_id=uid, order_id=order.id, total=order.total, items=len(order.items))
    flash("Order placed successfully!", "ok")
    return redirect(url_for("order_summary", order_id=order.id))

@app.route("/orders")
@login_required
def order_history():
    return render_template("orders.html", orders=orders.get_by_user_id(get_db(), current_user()["id"]))

@app.route("/order/<int:order_id>")
@login_required
def order_summary(order_id):
    try:
        order = orders.get_for_principal(get_db(), order_id, current_user())
    except (NotFound, AccessDenied) as exc:
        flash(exc.message, "error")
        return redirect(url_for("order_history"))
    return render_template("order_summary.html", order=order)


#        Accounts
@app.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "GET":
        return render_template("register.html", form={})

    form = request.form.to_dict()
    try:
        user = accounts.register(get_db(), form, get_otp_cache(), get_mailer())
    except (ValidationError, EmailTaken) as exc:
        form.pop("password", None)
        flash(exc.message, "error")
        return render_template("register.html", form=form), 400
    except DispatchFailure:
        email = accounts.normalize_email(form.get("email"))
        log_action("register", email=email, mail_sent=False)
        flash("Your account was created but we couldn't send the verification email. "
              "Please request a new code.", "error")
        return redirect(url_for("verify_otp", email=email))

    log_action("register", user_id=user.id, email=user.email, mail_sent=True)
    flash(f"Registration successful! We sent a verification code to {user.email}.", "ok")
    return redirect(url_for("verify_otp", email=user.email))

@app.route("/verify-otp", methods=["GET", "POST"])
def verify_otp():
    if request.method == "GET":
        return render_template("verify_otp.html", email=request.args.get("email", ""))

    email = accounts.normalize_email(request.form.get("email"))
    try:
        user = accounts.verify_otp(get_db(), email, request.form.get("otp"), get_otp_cache())
    except (OTPExpired, OTPMismatch, NotFound) as exc:
        log_action("verify_otp", email=email, ok=False)
        flash(exc.message, "error")
        return redirect(url_for("verify_otp", email=email))

    log_action("verify_otp", user_id=user.id, email=email, ok=True)
    flash("Email verified! Please log in.", "ok")
    return redirect(url_for("login"))

@app.route("/resend-otp", methods=["POST"])
def resend_otp():
    email = accounts.normalize_email(request.form.get("email"))
    try:
        sent = accounts.request_otp(get_db(), email, get_otp_cache(), get_mailer())
    except (NotFound, DispatchFailure) as exc:
        flash(exc.message, "error")
        return redirect(url_for("verify_otp", email=email))
    if not sent:
        flash("This account is already verified. Please log in.", "ok")
        return redirect(url_for("login"))
    log_action("resend_otp", email=email)
    flash(f"A new verification code has been sent to {email}.", "ok")
    return redirect(url_for("verify_otp", email=email))

@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        return render_template("login.html")

    email = (request.form.get("email") or "").strip()
    password = request.form.get("password") or ""
    if not email or not password:
        flash("All fields are required.", "error")
        return redirect(url_for("login"))

    try:
        user = accounts.login(get_db(), email, password)
    except (InvalidCredentials, NotVerified) as exc:
        log_action("login", email=email, ok=False, reason=type(exc).__name__)
        flash(exc.message, "error")
        return redirect(url_for("login"))

    session.clear()
    session["user"] = user.to_session()
    log_action("login", user_id=user.id, ok=True)
    flash("Login successful!", "ok")
    if user.is_admin:
        return redirect(url_for("inventory"))
    return redirect(url_for("catalog"))

@app.route("/logout")
def logout():
    session.clear()
    flash("Logged out.", "ok")
    return redirect(url_for("catalog"))


# Admin
@app.route("/inventory")
@admin_required
def inventory():
    return render_template("admin_products.html", products=catalog_products())

@app.route("/admin/products", methods=["POST"])
@admin_required
def admin_products_post():
    """Create a product, or update it when the form carries a known id."""
    pid = (request.form.get("id") or "").strip()
    uploaded = None
    try:
        uploaded = save_image(request.files.get("image"))
        # no upload keeps the image already on file
        image = uploaded or (request.form.get("current_image") or "").strip() or None
        product = catalog_store.save_product(
            get_db(),
            request.form.get("name"),
            request.form.get("quantity", "0"),
            request.form.get("price", "0"),
            image=image,
            product_id=int(pid) if pid.isdigit() else None,
        )
    except (ValidationError, NotFound) as exc:
        if uploaded:
            os.remove(os.path.join(app.config["UPLOAD_FOLDER"], uploaded))
        flash(exc.message, "error")
        return redirect(url_for("inventory"))

    log_action("admin_save_product", product_id=product.id, updated=bool(pid))
    flash("Saved.", "ok")
    return redirect(url_for("inventory"))

@app.route("/admin/products/<int:product_id>/delete", methods=["POST"])
@admin_required
def admin_product_delete(product_id):
    try:
        catalog_store.delete_product(get_db(), product_id)
    except NotFound as exc:
        flash(exc.message, "error")
        return redirect(url_for("inventory"))
    log_action("admin_delete_product", product_id=product_id)
    flash("Product deleted.", "ok")
    return redirect(url_for("inventory"))

@app.route("/admin/orders")
@admin_required
def admin_orders():
    return render_template("admin_orders.html", orders=orders.get_all(get_db()),
                           statuses=orders.SUGGESTED_STATUSES)

@app.route("/admin/order/<int:order_id>/status", methods=["POST"])
@admin_required
def admin_order_status(order_id):
    status = request.form.get("status")
    try:
        orders.set_status(get_db(), order_id, status)
    except (ValidationError, NotFound) as exc:
        flash(exc.message, "error")
        return redirect(url_for("admin_orders"))
    log_action("admin_order_status", order_id=order_id, status=status)
    flash("Order status updated successfully", "ok")
    return redirect(url_for("admin_orders"))

@app.route("/admin/order/<int:order_id>/delete", methods=["POST"])
@admin_required
def admin_order_delete(order_id):
    try:
        orders.delete_order(get_db(), order_id)
    except NotFound as exc:
        flash(exc.message, "error")
        return redirect(url_for("admin_orders"))
    log_action("admin_delete_order", order_id=order_id)
    flash("Order deleted successfully", "ok")
    return redirect(url_for("admin_orders"))

@app.route("/admin/users", methods=["GET", "POST"])
@admin_required
def admin_users():
    """List users; POST creates a verified admin account."""
    form = {}
    if request.method == "POST":
        form = request.form.to_dict()
        try:
            user = accounts.create_admin(get_db(), form)
        except (ValidationError, EmailTaken) as exc:
            form.pop("password", None)
            flash(exc.message, "error")
        else:
            log_action("admin_create_admin", user_id=user.id, by=current_user()["id"])
            flash(f"Admin {user.username} created.", "ok")
            return redirect(url_for("admin_users"))
    return render_template("admin_users.html", users=accounts.list_users(get_db()), form=form)

@app.route("/admin/users/<int:user_id>/delete", methods=["POST"])
@admin_required
def admin_user_delete(user_id):
    if user_id == current_user()["id"]:
        flash("You cannot delete your own account.", "error")
        return redirect(url_for("admin_users"))
    try:
        accounts.delete_user(get_db(), user_id)
    except NotFound as exc:
        flash(exc.message, "error")
        return redirect(url_for("admin_users"))
    log_action("admin_delete_user", user_id=user_id, by=current_user()["id"])
    flash("User deleted.", "ok")
    return redirect(url_for("admin_users"))


# CLI
SAMPLE_PRODUCTS = [
    ("Apples (1kg)", 120, "3.20", "apples.png"),
    ("Bananas (bunch)", 80, "2.50", "bananas.png"),
    ("Fresh Milk 1L", 60, "2.95", "milk.png"),
    ("Wholemeal Bread", 40, "3.60", "bread.png"),
    ("Free-range Eggs (10)", 50, "4.80", "eggs.png"),
    ("Olive Oil 500ml", 25, "10.00", "olive_oil.png"),
]

@app.cli.command("init-db")
def init_db_command():
    """Create the tables."""
    get_db()
    click.echo(f"Initialized the database at {app.config['DATABASE']}.")

@app.cli.command("seed")
def seed_command():
    """Insert sample products into an empty catalog."""
    conn = get_db()
    if catalog_store.list_products(conn):
        click.echo("Products already exist, nothing to do.")
        return
    for name, qty, price, image in SAMPLE_PRODUCTS:
        catalog_store.save_product(conn, name, qty, price, image=image)
    click.echo(f"Seeded {len(SAMPLE_PRODUCTS)} products.")

@app.cli.command("create-admin")
@click.option("--username", prompt=True)
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--address", prompt=True)
@click.option("--contact", prompt="Contact (8 digits)")
def create_admin_command(username, email, password, address, contact):
    """Create a verified admin account."""
    try:
        user = accounts.create_admin(get_db(), {
            "username": username, "email": email, "password": password,
            "address": address, "contact": contact,
        })
    except (ValidationError, EmailTaken) as exc:
        raise click.ClickException(exc.message)
    log_action("cli_create_admin", user_id=user.id, email=user.email)
    click.echo(f"Admin {user.username} <{user.email}> created.")


if __name__ == "__main__":
    app.run(debug=True)
