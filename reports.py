"""
Reporting: admin dashboard metrics, the customer mobile dashboard, the monthly
summary, the daily delivery CSV sheet and the printable order invoice.
"""
import csv
import io
from datetime import datetime, timedelta
from html import escape

from database import serialize_doc, with_customer_info
from order_status import MobileOrderStatus, OrderStatus
from schemas import CRATE_FIELDS, CRATE_TYPES

CSV_FIELDS = [
    "shop_name",
    "address",
    "delivery_date",
    "delivery_time",
    "status",
    "payment_status",
    *CRATE_FIELDS,
    "total_amount",
]


def _revenue(collection, match=None) -> float:
    pipeline = []
    if match:
        pipeline.append({"$match": match})
    pipeline.append({"$group": {"_id": None, "total": {"$sum": "$total_amount"}}})
    rows = list(collection.aggregate(pipeline))
    return round(rows[0]["total"], 2) if rows else 0


def dashboard_stats(db, now: datetime) -> dict:
    today_start = datetime(now.year, now.month, now.day)
    today = {"created_at": {"$gte": today_start, "$lt": today_start + timedelta(days=1)}}

    mobile = db["mobileorder"]
    web = db["order"]
    mobile_stats = {
        "total": mobile.count_documents({}),
        "today": mobile.count_documents(today),
        "pending": mobile.count_documents({"status": MobileOrderStatus.PENDING_VERIFICATION.value}),
        "revenue": _revenue(mobile),
        "today_revenue": _revenue(mobile, today),
    }
    web_stats = {
        "total": web.count_documents({}),
        "today": web.count_documents(today),
        "pending": web.count_documents({"status": OrderStatus.PENDING.value}),
        "revenue": _revenue(web),
        "today_revenue": _revenue(web, today),
    }

    recent = with_customer_info(mobile.find().sort("created_at", -1).limit(5), fields=("name", "email"))

    return {
        "total_customers": db["user"].count_documents({"role": "customer"}),
        "total_orders": mobile_stats["total"] + web_stats["total"],
        "today_orders": mobile_stats["today"] + web_stats["today"],
        "pending_orders": mobile_stats["pending"] + web_stats["pending"],
        "total_revenue": round(mobile_stats["revenue"] + web_stats["revenue"], 2),
        "today_revenue": round(mobile_stats["today_revenue"] + web_stats["today_revenue"], 2),
        "mobile_orders": mobile_stats,
        "web_orders": web_stats,
        "recent_orders": recent,
    }


MOBILE_OPEN_STATUSES = (MobileOrderStatus.PENDING.value, MobileOrderStatus.PENDING_VERIFICATION.value)


def customer_mobile_dashboard(orders: list) -> dict:
    """Group a customer's mobile order items into placed orders and total them.

    `orders` are raw `mobileorder` documents, newest first. Items sharing an
    `order_group_id` came from one cart; an item without a group is its own order.
    """
    groups = {}
    for doc in orders:
        key = doc.get("order_group_id") or str(doc["_id"])
        group = groups.setdefault(key, {
            "order_group_id": key,
            "created_at": doc.get("created_at"),
            "items": [],
            "total_amount": 0.0,
            "total_quantity": 0,
        })
        group["items"].append(serialize_doc(doc))
        group["total_amount"] = round(group["total_amount"] + (doc.get("total_amount") or 0), 2)
        group["total_quantity"] += doc.get("quantity") or 0

    for group in groups.values():
        statuses = {item["status"] for item in group["items"]}
        group["status"] = statuses.pop() if len(statuses) == 1 else "mixed"
        if isinstance(group["created_at"], datetime):
            group["created_at"] = group["created_at"].isoformat()

    placed = list(groups.values())
    billable = [doc for doc in orders if doc.get("status") != MobileOrderStatus.CANCELLED.value]
    return {
        "orders": placed,
        "stats": {
            "total_orders": len(placed),
            "delivered_orders": sum(1 for g in placed if g["status"] == MobileOrderStatus.DELIVERED.value),
            "pending_orders": sum(1 for g in placed
                                  if any(i["status"] in MOBILE_OPEN_STATUSES for i in g["items"])),
            "total_spent": round(sum(doc.get("total_amount") or 0 for doc in billable), 2),
            "total_items": len(orders),
            "total_quantity": sum(doc.get("quantity") or 0 for doc in billable),
        },
    }


def monthly_summary(db, now: datetime) -> dict:
    month_start = datetime(now.year, now.month, 1)
    orders = list(db["order"].find({"delivery_date": {"$gte": month_start}}))

    crate_breakdown = {field: 0 for field in CRATE_FIELDS}
    shops = {}
    total_amount = 0.0
    for order in orders:
        amount = order.get("total_amount") or 0
        total_amount += amount
        order_crates = 0
        for field in CRATE_FIELDS:
            count = order.get(field) or 0
            crate_breakdown[field] += count
            order_crates += count
        shop = shops.setdefault(order.get("shop_name"), {"shop_name": order.get("shop_name"),
                                                          "total_amount": 0.0, "total_crates": 0})
        shop["total_amount"] = round(shop["total_amount"] + amount, 2)
        shop["total_crates"] += order_crates

    total_crates = sum(crate_breakdown.values())
    most_ordered = max(crate_breakdown, key=crate_breakdown.get) if total_crates else None
    top_customers = sorted(shops.values(), key=lambda s: s["total_amount"], reverse=True)[:3]
    return {
        "month": month_start.strftime("%Y-%m"),
        "total_orders": len(orders),
        "total_amount": round(total_amount, 2),
        "total_crates": total_crates,
        "most_ordered_product": most_ordered,
        "crate_breakdown": crate_breakdown,
        "top_customers": top_customers,
    }


def deliveries_csv(db, day: datetime) -> str:
    orders = db["order"].find({"delivery_date": {"$gte": day, "$lt": day + timedelta(days=1)}}).sort(
        "delivery_time", 1)
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for order in orders:
        row = {field: order.get(field, 0) for field in CSV_FIELDS}
        row["shop_name"] = order.get("shop_name") or "N/A"
        row["address"] = order.get("address") or "N/A"
        row["delivery_date"] = order["delivery_date"].strftime("%Y-%m-%d")
        writer.writerow(row)
    return out.getvalue()


def render_invoice_html(order: dict) -> str:
    rows = "".join(
        f"<tr><td>{label}</td><td class='right'>{order.get(field, 0)}</td>"
        f"<td class='right'>{price:.2f}</td><td class='right'>{order.get(field, 0) * price:.2f}</td></tr>"
        for field, (label, price) in CRATE_TYPES.items()
        if order.get(field, 0) > 0
    )
    delivery_date = order["delivery_date"].strftime("%d %b %Y")
    return f"""
    <html>
    <head>
      <meta charset='utf-8' />
      <title>Invoice {order['_id']}</title>
      <style>
        body {{ font-family: Arial, sans-serif; color:#111; }}
        .container {{ max-width: 800px; margin: 0 auto; }}
        table {{ width:100%; border-collapse: collapse; }}
        th, td {{ border:1px solid #ddd; padding:8px; }}
        th {{ background:#f5f5f5; text-align:left; }}
        .right {{ text-align:right; }}
      </style>
    </head>
    <body>
      <div class='container'>
        <h1>Kumar Milk Distributors</h1>
        <p><strong>Invoice Date:</strong> {datetime.now().strftime('%d %b %Y')}</p>
        <p><strong>Invoice For Order ID:</strong> {order['_id']}</p>
        <p><strong>Shop Name:</strong> {escape(order.get('shop_name', ''))}<br/>
           <strong>Address:</strong> {escape(order.get('address', ''))}<br/>
           <strong>Delivery:</strong> {delivery_date} {escape(order.get('delivery_time', ''))}</p>
        <table>
          <thead>
            <tr><th>Product</th><th class='right'>Crates</th><th class='right'>Rate</th><th class='right'>Amount</th></tr>
          </thead>
          <tbody>
            {rows}
          </tbody>
        </table>
        <h2 class='right'>Total Amount: &#8377;{order.get('total_amount', 0):.2f}</h2>
        <p class='right'>Payment Method: {order.get('payment_method')}<br/>
           Payment Status: {order.get('payment_status')}<br/>
           Order Status: {order.get('status')}</p>
      </div>
    </body>
    </html>
    """
