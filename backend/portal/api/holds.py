"""Holdings, hold placement and the holds list (cancel and edit)."""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import get_current_active_user, get_ils, get_optional_user, get_patron
from portal.config import settings
from portal.database import get_db
from portal.models.audit import AuditAction, AuditLog
from portal.models.user import User
from portal.schemas.holds import CancelHoldsRequest, EditHoldsRequest, HoldForm, HoldUpdateDetails
from portal.services.catalog_auth import stored_catalog_login
from portal.services.flash import FlashMessenger
from portal.services.holds import HoldsHelper, split_fields
from portal.services.ils import ILSConnection, ILSException
from portal.services.session_store import ils_cache, session_store

logger = structlog.get_logger()
router = APIRouter()

UPDATE_RESULTS_KEY = "hold_update_results"


def cache_key(patron: Dict[str, Any], suffix: str) -> str:
    return f"holds::{patron.get('id')}::{suffix}"


def respond(flash: FlashMessenger, data: Optional[Dict[str, Any]] = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse({**(data or {}), "messages": flash.messages}, status_code=status_code)


def get_helper(user: User, flash: FlashMessenger) -> HoldsHelper:
    return HoldsHelper(session_store.get(user.id), flash)


async def _hold_config(catalog: ILSConnection, record_id: Optional[str], patron) -> Dict[str, Any]:
    """Holds configuration for placing holds through this service, or {}."""
    config = await catalog.check_function("Holds", {"id": record_id, "patron": patron})
    if not config or config.get("function") != "placeHold":
        return {}
    return config


async def _gather(
    request: Request,
    record_id: str,
    catalog: ILSConnection,
    patron: Dict[str, Any],
    helper: HoldsHelper,
    posted: Optional[Dict[str, Any]] = None,
):
    """Validate the hold link and the request; returns (config, gathered) or a response."""
    config = await _hold_config(catalog, record_id, patron)
    if not config:
        helper.flash.error("hold_error_blocked")
        return None, respond(helper.flash, status_code=status.HTTP_400_BAD_REQUEST)

    params = dict(request.query_params)
    params["id"] = record_id
    gathered = helper.validate_request(config["HMACKeys"], params, posted)
    if not gathered:
        logger.warning("Hold link failed validation", record_id=record_id)
        helper.flash.error("error_inconsistent_parameters")
        return None, respond(helper.flash, status_code=status.HTTP_400_BAD_REQUEST)

    validity = await catalog.check_request_is_valid(record_id, gathered, patron)
    if not validity or (isinstance(validity, dict) and not validity.get("valid")):
        helper.flash.error(validity["status"] if isinstance(validity, dict) else "hold_error_blocked")
        return None, respond(helper.flash, status_code=status.HTTP_403_FORBIDDEN)
    return config, gathered


async def _form_options(
    catalog: ILSConnection,
    record_id: str,
    patron: Dict[str, Any],
    gathered: Dict[str, Any],
    extra_fields: List[str],
) -> Dict[str, Any]:
    options: Dict[str, Any] = {"pickup": [], "defaultPickup": None, "requestGroups": [], "defaultRequestGroup": None}
    if "pickUpLocation" in extra_fields:
        options["pickup"] = await catalog.get_pick_up_locations(patron, gathered)
        options["defaultPickup"] = await catalog.get_default_pick_up_location(patron, gathered)
    if "requestGroup" in extra_fields:
        options["requestGroups"] = await catalog.get_request_groups(record_id, patron, gathered)
        options["defaultRequestGroup"] = await catalog.get_default_request_group(patron, gathered)
    options["requestGroupNeeded"] = (
        "requestGroup" in extra_fields
        and bool(options["requestGroups"])
        and gathered.get("level") != "copy"
    )
    return options


@router.get("/records/{record_id}/holdings")
async def record_holdings(
    record_id: str,
    user: Optional[User] = Depends(get_optional_user),
    catalog: ILSConnection = Depends(get_ils),
):
    """Holdings of a record; holdable items carry signed hold link parameters."""
    flash = FlashMessenger()
    patron = await stored_catalog_login(catalog, user) if user else None
    holding = await catalog.get_holding(record_id, patron)

    config = await _hold_config(catalog, record_id, patron) if patron else {}
    items = []
    for item in holding.get("holdings", []):
        item = dict(item)
        if config and item.get("is_holdable") and item.get("addLink"):
            link = {key: item.get(key) for key in config["HMACKeys"]}
            link["id"] = record_id
            link["hashKey"] = get_helper(user, flash).make_link_hash(config["HMACKeys"], link)
            item["link"] = link
        items.append(item)

    return respond(flash, {
        "id": record_id,
        "total": holding.get("total", len(items)),
        "holdings": items,
        "electronic_holdings": holding.get("electronic_holdings", []),
    })


@router.get("/records/{record_id}/hold")
async def hold_form(
    record_id: str,
    request: Request,
    user: User = Depends(get_current_active_user),
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
):
    """Data needed to fill in a hold request for a signed hold link."""
    helper = get_helper(user, FlashMessenger())
    config, gathered = await _gather(request, record_id, catalog, patron, helper)
    if config is None:
        return gathered

    extra_fields = split_fields(config.get("extraHoldFields"))
    options = await _form_options(catalog, record_id, patron, gathered, extra_fields)
    default_required = await helper.get_default_required_date(config, catalog, patron, gathered)
    return respond(helper.flash, {
        "gatheredDetails": gathered,
        "extraHoldFields": extra_fields,
        "defaultRequiredDate": helper.dates.timestamp_to_display_date(default_required),
        "helpText": config.get("helpText", ""),
        **options,
    })


@router.post("/records/{record_id}/hold")
async def place_hold(
    record_id: str,
    form: HoldForm,
    request: Request,
    user: User = Depends(get_current_active_user),
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
    db: AsyncSession = Depends(get_db),
):
    """Validate a hold request and send it to the ILS."""
    helper = get_helper(user, FlashMessenger())
    config, gathered = await _gather(
        request, record_id, catalog, patron, helper, form.model_dump(exclude_none=True)
    )
    if config is None:
        return gathered

    extra_fields = split_fields(config.get("extraHoldFields"))
    options = await _form_options(catalog, record_id, patron, gathered, extra_fields)
    if "pickUpLocation" in extra_fields and not gathered.get("pickUpLocation"):
        gathered["pickUpLocation"] = options["defaultPickup"]
    valid_pickup = helper.validate_pick_up_input(gathered.get("pickUpLocation"), extra_fields, options["pickup"])
    valid_group = not options["requestGroupNeeded"] or helper.validate_request_group_input(
        gathered, extra_fields, options["requestGroups"]
    )
    dates = helper.validate_dates(gathered.get("startDate"), gathered.get("requiredByDate"), extra_fields)

    if not valid_pickup:
        helper.flash.error("hold_invalid_pickup")
    elif not valid_group:
        helper.flash.error("hold_invalid_request_group")
    for msg in dates["errors"]:
        helper.flash.error(msg)
    if helper.flash.has_errors():
        return respond(helper.flash, {"gatheredDetails": gathered}, status.HTTP_400_BAD_REQUEST)

    details = {
        **gathered,
        "patron": patron,
        "holdtype": "hold",
        "startDateTS": dates["startDateTS"],
        "requiredBy": gathered.get("requiredByDate", ""),
        "requiredByTS": dates["requiredByTS"],
        "comment": gathered.get("comment", ""),
    }
    result = await catalog.place_hold(details)
    db.add(AuditLog.for_request(
        request,
        AuditAction.HOLD_PLACE,
        user.id,
        resource_type="record",
        resource_id=record_id,
        success="success" if result and result.get("success") else "failure",
    ))
    if result and result.get("success"):
        ils_cache.delete(cache_key(patron, "holds"))
        logger.info("Hold placed", user_id=user.id, record_id=record_id)
        helper.flash.success("hold_place_success")
        return respond(helper.flash, {"success": True})

    helper.flash.error("hold_place_fail_text")
    if result and result.get("sysMessage"):
        helper.flash.error(result["sysMessage"])
    return respond(helper.flash, {"success": False, "gatheredDetails": gathered}, status.HTTP_400_BAD_REQUEST)


@router.get("/holds")
async def list_holds(
    user: User = Depends(get_current_active_user),
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
):
    """The patron's holds with the details needed to cancel or edit them."""
    helper = get_helper(user, FlashMessenger())
    cancel_status = await catalog.check_function("cancelHolds", {"patron": patron})
    config = await catalog.check_function("Holds", {"patron": patron}) or {}
    update_fields = config.get("updateFields") or []

    result = await catalog.get_my_holds(patron)
    ils_cache.set(cache_key(patron, "holds"), result, settings.ILS_HOLDS_CACHE_SECONDS)

    helper.reset_validation()
    cancel_form = False
    update_form = False
    holds = []
    for current in result:
        if cancel_status:
            current = await helper.add_cancel_details(catalog, current, cancel_status, patron)
            if current.get("cancel_details") or current.get("cancel_link"):
                cancel_form = True
        else:
            current = {k: v for k, v in current.items() if k not in ("cancel_details", "cancel_link")}
        if update_fields and current.get("updateDetails"):
            update_form = True
            helper.remember_valid_id(current["updateDetails"])
        else:
            current.pop("updateDetails", None)
        holds.append(current)

    pickup = ils_cache.get(cache_key(patron, "pickup"))
    if pickup is None:
        try:
            pickup = await catalog.get_pick_up_locations(patron)
        except ILSException as e:
            # Pickup locations are optional for the listing
            logger.info("Pickup locations unavailable", error=str(e))
            pickup = []
        ils_cache.set(cache_key(patron, "pickup"), pickup, settings.ILS_HOLDS_CACHE_SECONDS)

    return respond(helper.flash, {
        "holds": holds,
        "cancelForm": bool(cancel_form and cancel_status and cancel_status["function"] != "getCancelHoldLink"),
        "updateForm": update_form,
        "pickup": pickup,
        "updateResults": helper.session.data.pop(UPDATE_RESULTS_KEY, None),
    })


@router.post("/holds/cancel")
async def cancel_holds(
    data: CancelHoldsRequest,
    request: Request,
    user: User = Depends(get_current_active_user),
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
    db: AsyncSession = Depends(get_db),
):
    """Cancel all or selected holds offered by the last listing."""
    helper = get_helper(user, FlashMessenger())
    cancel_status = await catalog.check_function("cancelHolds", {"patron": patron})
    if not cancel_status or cancel_status["function"] != "cancelHolds":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="hold_cancel_unavailable")

    results = await helper.cancel_holds(catalog, patron, data.model_dump())
    if "confirm" in results:
        return respond(helper.flash, results)
    if results:
        ils_cache.delete(cache_key(patron, "holds"))
        db.add(AuditLog.for_request(
            request, AuditAction.HOLD_CANCEL, user.id, details={"count": results.get("count", 0)}
        ))
    return respond(helper.flash, {"cancelResults": results})


async def pickup_locations_for_edit(
    catalog: ILSConnection,
    patron: Dict[str, Any],
    selected_ids: List[str],
    flash: FlashMessenger,
    check_limit: int = 0,
) -> Dict[str, Any]:
    """Pickup locations shared by all selected holds.

    ``differences`` is set when the holds do not all offer the same
    locations. At most ``check_limit`` holds are asked (0 means all).
    """
    holds = ils_cache.get(cache_key(patron, "holds"))
    if holds is None:
        holds = await catalog.get_my_holds(patron)
    checks = 0
    locations: List[Dict[str, Any]] = []
    differences = False
    for hold in holds:
        if str(hold.get("updateDetails") or "") not in selected_ids:
            continue
        try:
            current = await catalog.get_pick_up_locations(patron, hold)
        except ILSException:
            flash.error("ils_connection_failed")
            continue
        if not locations:
            locations = current
        else:
            ids1 = [loc["locationID"] for loc in locations]
            ids2 = [loc["locationID"] for loc in current]
            if len(ids1) != len(ids2) or set(ids1) - set(ids2):
                differences = True
                common = set(ids1) & set(ids2)
                if not common:
                    locations = []
                    break
                locations = [loc for loc in locations if loc["locationID"] in common]
        checks += 1
        if check_limit and checks >= check_limit:
            break
    return {"pickupLocations": locations, "differences": differences}


def update_fields_from_details(
    helper: HoldsHelper,
    config: Dict[str, Any],
    details: HoldUpdateDetails,
    pickup_locations: List[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """Fields to pass to the ILS, or None when the input is invalid."""
    allowed = config["updateFields"]
    pickup = details.pickUpLocation or ""
    valid_pickup = True
    if pickup:
        valid_pickup = helper.validate_pick_up_input(pickup, allowed, pickup_locations)

    dates: Dict[str, Any] = {"startDateTS": None, "requiredByTS": None, "errors": []}
    if details.startDate or details.requiredBy:
        dates = helper.validate_dates(details.startDate, details.requiredBy, allowed)
    frozen_through: Dict[str, Any] = {"frozenThroughTS": None, "errors": []}
    if "frozenThrough" in allowed:
        frozen_through = helper.validate_frozen_through(details.frozenThrough, allowed)
        for msg in frozen_through["errors"]:
            if msg not in dates["errors"]:
                dates["errors"].append(msg)

    if not valid_pickup:
        helper.flash.error("hold_invalid_pickup")
    for msg in dates["errors"]:
        helper.flash.error(msg)
    if not valid_pickup or dates["errors"]:
        return None

    fields: Dict[str, Any] = {}
    if pickup:
        fields["pickUpLocation"] = pickup
    if details.startDate:
        fields["startDate"] = details.startDate
        fields["startDateTS"] = dates["startDateTS"]
    if details.requiredBy:
        fields["requiredBy"] = details.requiredBy
        fields["requiredByTS"] = dates["requiredByTS"]
    if details.frozen:
        fields["frozen"] = details.frozen == "1"
        if details.frozenThrough:
            fields["frozenThrough"] = details.frozenThrough
            fields["frozenThroughTS"] = frozen_through["frozenThroughTS"]
    return fields


async def _edit(
    data: EditHoldsRequest,
    user: User,
    patron: Dict[str, Any],
    catalog: ILSConnection,
    request: Optional[Request] = None,
    db: Optional[AsyncSession] = None,
) -> JSONResponse:
    helper = get_helper(user, FlashMessenger())
    config = await catalog.check_function("Holds", {"patron": patron}) or {}
    selected = [str(i) for i in data.selectedIDS]
    if not config.get("updateFields") or not selected:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="hold_edit_unavailable")
    if not helper.validate_ids(selected):
        logger.warning("Hold edit with unknown hold ids", user_id=user.id)
        helper.flash.error("error_inconsistent_parameters")
        return respond(helper.flash, status_code=status.HTTP_400_BAD_REQUEST)

    pickup_info = await pickup_locations_for_edit(
        catalog, patron, selected, helper.flash, config.get("pickUpLocationCheckLimit", 0)
    )

    if data.updateHolds:
        fields = update_fields_from_details(helper, config, data.gatheredDetails, pickup_info["pickupLocations"])
        if fields:
            results = await catalog.update_holds(selected, fields, patron)
            successful = sum(1 for r in results.values() if r.get("success"))
            failed = len(results) - successful
            helper.session.data[UPDATE_RESULTS_KEY] = results
            ils_cache.delete(cache_key(patron, "holds"))
            if db is not None:
                db.add(AuditLog.for_request(
                    request, AuditAction.HOLD_UPDATE, user.id, details={"updated": successful, "failed": failed}
                ))
            if successful:
                helper.flash.success("hold_edit_success_items", {"%%count%%": successful})
            if failed:
                helper.flash.error("hold_edit_failed_items", {"%%count%%": failed})
            return respond(helper.flash, {"updated": True, "results": results})

    return respond(helper.flash, {
        "selectedIDS": selected,
        "fields": config["updateFields"],
        "gatheredDetails": data.gatheredDetails.model_dump(exclude_none=True),
        "pickupLocations": pickup_info["pickupLocations"],
        "conflictingPickupLocations": pickup_info["differences"],
        "helpText": config.get("updateHelpText", ""),
    }, status.HTTP_400_BAD_REQUEST if helper.flash.has_errors() and data.updateHolds else 200)


@router.get("/holds/edit")
async def edit_holds_form(
    selectedIDS: List[str] = Query(default=[]),
    user: User = Depends(get_current_active_user),
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
):
    """Form data for editing the selected holds."""
    return await _edit(EditHoldsRequest(selectedIDS=selectedIDS), user, patron, catalog)


@router.post("/holds/edit")
async def edit_holds(
    data: EditHoldsRequest,
    request: Request,
    user: User = Depends(get_current_active_user),
    patron: Dict[str, Any] = Depends(get_patron),
    catalog: ILSConnection = Depends(get_ils),
    db: AsyncSession = Depends(get_db),
):
    """Update the selected holds when ``updateHolds`` is set."""
    return await _edit(data, user, patron, catalog, request, db)
